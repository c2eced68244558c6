"""
Foundational adapter abstractions for the per-call voice pipeline.

Each external collaborator (speech recognition, reply generation, speech
synthesis, audio transcoding) is reached through one of the async interfaces
below. The session orchestrator and turn executor only ever talk to these
contracts, so vendor adapters can be swapped (or faked in tests) freely.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.models import Classification, TranscriptFragment


class AdapterError(Exception):
    """Raised by an adapter when its external operation fails."""

    def __init__(self, message: str, *, component: Optional[str] = None):
        super().__init__(message)
        self.component = component


class RecognizerError(AdapterError):
    pass


class SynthesizerError(AdapterError):
    pass


class ResponderError(AdapterError):
    pass


class TranscoderError(AdapterError):
    """Transcoder process failure; carries the exit code and captured stderr."""

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        stderr: str = "",
        component: Optional[str] = None,
    ):
        super().__init__(message, component=component)
        self.returncode = returncode
        self.stderr = stderr


@dataclass
class ResponderReply:
    """Reply text plus the optional structured tail parsed out of it."""
    text: str
    payload: Optional[Dict[str, Any]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class Component(ABC):
    """Base class for all pipeline components."""

    async def start(self) -> None:
        """Warm up component resources (optional)."""

    async def stop(self) -> None:
        """Release resources (optional)."""

    async def open_call(self, call_id: str, options: Dict[str, Any]) -> None:
        """Prepare per-call state (optional)."""

    async def close_call(self, call_id: str) -> None:
        """Release per-call state (optional)."""


class RecognizerComponent(Component):
    """Streaming speech-to-text component."""

    @abstractmethod
    async def start_stream(self, call_id: str, options: Dict[str, Any]) -> None:
        """Open the recognition stream for a call."""

    @abstractmethod
    async def send_audio(self, call_id: str, chunk: bytes) -> None:
        """Forward one inbound audio frame, unmodified."""

    @abstractmethod
    def iter_results(self, call_id: str) -> AsyncIterator["TranscriptFragment"]:
        """Yield transcript fragments in arrival order until the stream ends."""

    @abstractmethod
    async def stop_stream(self, call_id: str) -> None:
        """Close the recognition stream; iter_results terminates afterwards."""


class ResponderComponent(Component):
    """Language model component."""

    @abstractmethod
    async def generate(
        self,
        call_id: str,
        utterance: str,
        context: Dict[str, Any],
        options: Dict[str, Any],
    ) -> ResponderReply:
        """Generate a spoken reply for the caller's utterance."""

    @abstractmethod
    async def classify(
        self,
        call_id: str,
        reason: str,
        context: Dict[str, Any],
        options: Dict[str, Any],
    ) -> "Classification":
        """Classify the caller's reason into the closed category/urgency vocabulary."""


class SynthesizerComponent(Component):
    """Text-to-speech component."""

    @abstractmethod
    async def synthesize(self, call_id: str, text: str, options: Dict[str, Any]) -> bytes:
        """Return encoded audio (container format is vendor-specific) for the text."""


class TranscoderComponent(Component):
    """Converts synthesized audio into the call leg's outbound format."""

    @abstractmethod
    async def transcode(self, call_id: str, audio: bytes) -> bytes:
        """Return raw outbound audio (e.g. 8 kHz mono μ-law) for the input."""
