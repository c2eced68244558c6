"""
Configuration file loading.

Handles three things before pydantic sees the data:
- which file to read (explicit path, ``VOICEDESK_CONFIG``, or the default)
- ``${VAR}`` / ``${VAR:-fallback}`` expansion from the environment
- an optional ``<name>.local.yaml`` overlay next to the base file, deep-merged
  on top so deployments can tweak prompts or framing without editing the
  shipped file
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Project root directory (parent of voicedesk/)
_PROJ_DIR = Path(__file__).parent.parent.parent.resolve()

CONFIG_PATH_ENV = "VOICEDESK_CONFIG"

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Resolve the configuration file to an absolute path.

    ``VOICEDESK_CONFIG`` is used when no path is passed. Relative paths are
    taken from the project root, not the working directory.
    """
    if not path:
        path = os.getenv(CONFIG_PATH_ENV) or "config/voicedesk.yaml"
    if not os.path.isabs(path):
        return os.path.join(_PROJ_DIR, path)
    return path


def local_overlay_path(path: str) -> str:
    """config/voicedesk.yaml -> config/voicedesk.local.yaml"""
    base = Path(path)
    return str(base.with_name(f"{base.stem}.local{base.suffix or '.yaml'}"))


def expand_env_refs(text: str) -> str:
    """
    Replace ``${VAR}`` and ``${VAR:-fallback}`` with environment values.

    Unset variables without a fallback are left as written so the YAML
    still parses and validation reports the literal.
    """
    def _sub(match):
        name, fallback = match.group(1), match.group(2)
        value = os.environ.get(name)
        if value is not None and value != "":
            return value
        if fallback is not None:
            return fallback
        return match.group(0)

    return _ENV_REF.sub(_sub, text)


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_yaml_with_env_expansion(path: str) -> dict:
    """
    Read one YAML file, expanding environment references first.

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            config_str = f.read()
        config_data = yaml.safe_load(expand_env_refs(config_str))
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found at: {path}")
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration {path}: {e}")

    if config_data is None:
        return {}
    if not isinstance(config_data, dict):
        raise yaml.YAMLError(f"Error parsing YAML configuration {path}: top level must be a mapping")
    return config_data


def load_config_data(path: str) -> dict:
    """Base file plus the optional local overlay."""
    config_data = load_yaml_with_env_expansion(path)
    overlay = local_overlay_path(path)
    if os.path.exists(overlay):
        config_data = deep_merge(config_data, load_yaml_with_env_expansion(overlay))
    return config_data
