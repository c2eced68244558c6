"""
Transport event variants for the media stream websocket.

Inbound messages are Twilio-style JSON envelopes tagged by ``event``:
``start``, ``media`` and ``stop``. Anything else (``connected``, ``mark``,
unknown kinds, malformed JSON) parses to ``None`` and is dropped.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Union

from ..logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StartEvent:
    session_id: str
    caller_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def caller_phone(self) -> Optional[str]:
        phone = self.caller_metadata.get("phone")
        return str(phone) if phone else None


@dataclass(frozen=True)
class MediaEvent:
    payload: bytes


@dataclass(frozen=True)
class StopEvent:
    pass


InboundEvent = Union[StartEvent, MediaEvent, StopEvent]


@dataclass(frozen=True)
class OutboundMedia:
    session_id: str
    payload: bytes

    def to_wire(self) -> Dict[str, Any]:
        return {
            "event": "media",
            "streamSid": self.session_id,
            "media": {"payload": base64.b64encode(self.payload).decode("ascii")},
        }


@dataclass(frozen=True)
class OutboundClear:
    session_id: str

    def to_wire(self) -> Dict[str, Any]:
        return {"event": "clear", "streamSid": self.session_id}


OutboundEvent = Union[OutboundMedia, OutboundClear]


class OutboundSink(Protocol):
    """Where a session writes outbound frames and clear commands."""

    @property
    def is_open(self) -> bool: ...

    async def send(self, event: OutboundEvent) -> None: ...


def _caller_metadata(start: Dict[str, Any]) -> Dict[str, Any]:
    custom = start.get("customParameters") or {}
    if not isinstance(custom, dict):
        custom = {}
    metadata: Dict[str, Any] = dict(custom)
    phone = custom.get("phone") or custom.get("from") or custom.get("From") or start.get("from")
    if phone:
        metadata["phone"] = str(phone)
    if start.get("callSid"):
        metadata["call_sid"] = start["callSid"]
    return metadata


def parse_inbound_event(raw: Union[str, bytes]) -> Optional[InboundEvent]:
    """Parse one websocket text message; returns None for anything to be ignored."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
        logger.debug("Dropping malformed transport message", preview=str(raw)[:64])
        return None
    if not isinstance(data, dict):
        return None

    kind = data.get("event")
    if kind == "start":
        start = data.get("start") or {}
        if not isinstance(start, dict):
            start = {}
        session_id = start.get("streamSid") or data.get("streamSid")
        if not session_id:
            logger.debug("Dropping start event without streamSid")
            return None
        return StartEvent(session_id=str(session_id), caller_metadata=_caller_metadata(start))

    if kind == "media":
        media = data.get("media") or {}
        payload = media.get("payload") if isinstance(media, dict) else None
        if not payload:
            return None
        try:
            return MediaEvent(payload=base64.b64decode(payload, validate=True))
        except (binascii.Error, ValueError, TypeError):
            logger.debug("Dropping media event with undecodable payload")
            return None

    if kind == "stop":
        return StopEvent()

    return None
