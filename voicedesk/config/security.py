"""
Security-critical configuration injection.

SECURITY POLICY:
- API keys MUST NEVER be in YAML files
- All vendor credentials MUST come from environment variables only
- Any key found in YAML is overwritten (or removed) here
"""

import os
from typing import Any, Dict, Optional


# provider name -> environment variables checked in order
PROVIDER_KEY_ENV = {
    "deepgram": ("DEEPGRAM_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    # EVENLABS_API_KEY is the spelling older deployments were provisioned with
    "elevenlabs": ("ELEVENLABS_API_KEY", "EVENLABS_API_KEY"),
}


def _first_env(names) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def inject_provider_api_keys(config_data: Dict[str, Any]) -> None:
    """
    Inject provider API keys from environment variables ONLY.

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    providers = config_data.get("providers")
    if not isinstance(providers, dict):
        providers = {}

    for provider_name, env_names in PROVIDER_KEY_ENV.items():
        block = providers.get(provider_name)
        if not isinstance(block, dict):
            block = {}
        block["api_key"] = _first_env(env_names)
        providers[provider_name] = block

    config_data["providers"] = providers
