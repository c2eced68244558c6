"""
Environment overrides and default application for configuration.

This module handles:
- Listening port (PORT)
- End-of-turn silence threshold override
- Outbound frame duration / codec parameters
- Ticket sink URL
- Vendor model / voice identifiers
"""

import os
from typing import Any, Dict, Optional


def _section(config_data: Dict[str, Any], *path: str) -> Dict[str, Any]:
    """Return (creating if needed) the nested dict at path."""
    node = config_data
    for key in path:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    return node


def _env_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _env_int(name: str) -> Optional[int]:
    """
    Parse an integer environment variable, ignoring trailing comments.

    "700  # ms" -> 700; missing or malformed values yield None.
    """
    value = os.getenv(name)
    if not value:
        return None
    value = value.split("#", 1)[0].strip()
    try:
        return int(value)
    except ValueError:
        return None


def apply_server_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - PORT: listening port (default: 3000)
    - HOST: bind address (default: 0.0.0.0)
    """
    server = _section(config_data, "server")
    port = _env_int("PORT")
    if port is not None:
        server["port"] = port
    host = _env_str("HOST")
    if host:
        server["host"] = host
    server.setdefault("port", 3000)


def apply_turn_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - SILENCE_THRESHOLD_MS: end-of-turn silence threshold (default: 700)
    """
    turn = _section(config_data, "turn")
    threshold = _env_int("SILENCE_THRESHOLD_MS")
    if threshold is not None and threshold > 0:
        turn["silence_threshold_ms"] = threshold
    turn.setdefault("silence_threshold_ms", 700)


def apply_playback_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - FRAME_DURATION_MS: outbound frame duration (default: 20)
    - OUTBOUND_SAMPLE_RATE: outbound sample rate in Hz (default: 8000)
    - OUTBOUND_CODEC: mulaw | alaw | pcm16 (default: mulaw)

    bytes_per_sample is derived from the codec unless set explicitly.
    """
    playback = _section(config_data, "playback")
    frame_ms = _env_int("FRAME_DURATION_MS")
    if frame_ms is not None and frame_ms > 0:
        playback["frame_duration_ms"] = frame_ms
    rate = _env_int("OUTBOUND_SAMPLE_RATE")
    if rate is not None and rate > 0:
        playback["sample_rate_hz"] = rate
    codec = _env_str("OUTBOUND_CODEC")
    if codec:
        playback["codec"] = codec.lower()

    codec_value = str(playback.get("codec", "mulaw")).lower()
    if "bytes_per_sample" not in playback:
        playback["bytes_per_sample"] = 2 if codec_value in ("pcm16", "slin16", "s16le", "linear16") else 1


def apply_ticket_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - TICKET_SINK_URL: ticket POST endpoint (default: unset, tickets are logged only)
    """
    ticket = _section(config_data, "ticket")
    url = _env_str("TICKET_SINK_URL")
    if url:
        ticket["url"] = url


def apply_provider_defaults(config_data: Dict[str, Any]) -> None:
    """
    Environment variables:
    - DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE
    - OPENAI_CHAT_MODEL, OPENAI_BASE_URL
    - ELEVENLABS_VOICE_ID, ELEVENLABS_MODEL_ID
    - FFMPEG_PATH
    - DIALOGUE_FLOW: identify_reason | reason_only
    """
    overrides = (
        (("providers", "deepgram"), "model", "DEEPGRAM_MODEL"),
        (("providers", "deepgram"), "language", "DEEPGRAM_LANGUAGE"),
        (("providers", "openai"), "chat_model", "OPENAI_CHAT_MODEL"),
        (("providers", "openai"), "chat_base_url", "OPENAI_BASE_URL"),
        (("providers", "elevenlabs"), "voice_id", "ELEVENLABS_VOICE_ID"),
        (("providers", "elevenlabs"), "model_id", "ELEVENLABS_MODEL_ID"),
        (("transcoder",), "ffmpeg_path", "FFMPEG_PATH"),
        (("dialogue",), "flow", "DIALOGUE_FLOW"),
    )
    for path, key, env_name in overrides:
        value = _env_str(env_name)
        if value:
            _section(config_data, *path)[key] = value
