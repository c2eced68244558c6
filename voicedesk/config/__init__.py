"""
Configuration package for the voicedesk media service.

This package contains:
- models: Pydantic models for every recognized option
- loaders: YAML file loading and parsing
- security: API key injection from the environment
- defaults: environment overrides (port, silence threshold, framing, sink URL)
"""

import os
from typing import List, Optional, Tuple

from voicedesk.config.defaults import (
    apply_playback_defaults,
    apply_provider_defaults,
    apply_server_defaults,
    apply_ticket_defaults,
    apply_turn_defaults,
)
from voicedesk.config.loaders import load_config_data, resolve_config_path
from voicedesk.config.models import (
    AppConfig,
    DeepgramProviderConfig,
    DialogueConfig,
    ElevenLabsProviderConfig,
    LoggingConfig,
    OpenAIProviderConfig,
    PlaybackConfig,
    ProvidersConfig,
    ServerConfig,
    TicketSinkConfig,
    TimeoutsConfig,
    TranscoderConfig,
    TurnConfig,
)
from voicedesk.config.security import inject_provider_api_keys

DEFAULT_CONFIG_PATH = "config/voicedesk.yaml"


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from YAML file plus environment.

    Args:
        path: YAML file (absolute or relative to project root); defaults to
            VOICEDESK_CONFIG, then config/voicedesk.yaml

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If the merged configuration is invalid
    """
    # Phase 1: YAML file (plus local overlay) with environment expansion
    path = resolve_config_path(path)
    config_data = load_config_data(path)

    # Phase 2: Security - credentials from environment variables only
    inject_provider_api_keys(config_data)

    # Phase 3: Environment overrides and defaults
    apply_server_defaults(config_data)
    apply_turn_defaults(config_data)
    apply_playback_defaults(config_data)
    apply_ticket_defaults(config_data)
    apply_provider_defaults(config_data)

    # Phase 4: Validate and return
    return AppConfig(**config_data)


def validate_production_config(config: AppConfig) -> Tuple[List[str], List[str]]:
    """
    Validate configuration for a live deployment.

    Returns:
        (errors, warnings): errors block startup, warnings are logged only.
    """
    errors: List[str] = []
    warnings: List[str] = []

    providers = config.providers
    if not providers.deepgram.api_key:
        errors.append("DEEPGRAM_API_KEY is not set (speech recognition unavailable)")
    if not providers.openai.api_key:
        errors.append("OPENAI_API_KEY is not set (replies unavailable)")
    if not providers.elevenlabs.api_key:
        errors.append("ELEVENLABS_API_KEY is not set (speech synthesis unavailable)")

    if not (1 <= config.server.port <= 65535):
        errors.append(f"Listening port {config.server.port} out of valid range (1-65535)")

    playback = config.playback
    if playback.frame_bytes <= 0:
        errors.append("Outbound frame size resolves to zero bytes")
    if playback.codec in ("mulaw", "alaw") and playback.bytes_per_sample != 1:
        warnings.append(f"Codec {playback.codec} normally uses 1 byte per sample, got {playback.bytes_per_sample}")
    if playback.frame_duration_ms not in (10, 20, 30, 40, 60):
        warnings.append(f"Unusual frame duration: {playback.frame_duration_ms}ms")

    threshold = config.turn.silence_threshold_ms
    if threshold < 200:
        warnings.append(f"Silence threshold very small: {threshold}ms (callers will be cut off)")
    elif threshold > 3000:
        warnings.append(f"Silence threshold very large: {threshold}ms (adds reply latency)")

    if not config.ticket.url:
        warnings.append("TICKET_SINK_URL is not set; tickets will only be logged")

    if os.getenv('LOG_LEVEL', 'info').lower() == 'debug':
        warnings.append("Debug logging enabled (transcripts and caller data will be logged)")

    return errors, warnings


__all__ = [
    'AppConfig',
    'DeepgramProviderConfig',
    'DialogueConfig',
    'ElevenLabsProviderConfig',
    'LoggingConfig',
    'OpenAIProviderConfig',
    'PlaybackConfig',
    'ProvidersConfig',
    'ServerConfig',
    'TicketSinkConfig',
    'TimeoutsConfig',
    'TranscoderConfig',
    'TurnConfig',
    'DEFAULT_CONFIG_PATH',
    'load_config',
    'validate_production_config',
]
