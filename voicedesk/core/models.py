"""
Core data models for the voicedesk media service.

CallSession is the single owned state container for one call. It is only
mutated from the session's own event path (the orchestrator run loop and
the turn task it starts), so none of these methods take locks.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import time


class Stage(str, Enum):
    IDENTIFY = "identify"
    REASON = "reason"
    DONE = "done"


_STAGE_ORDER = {Stage.IDENTIFY: 0, Stage.REASON: 1, Stage.DONE: 2}


@dataclass(frozen=True)
class TranscriptFragment:
    """One recognizer result."""
    text: str
    is_final: bool
    is_end_of_speech: bool = False
    timestamp: float = field(default_factory=time.monotonic)


@dataclass
class Turn:
    """Outcome of one turn executor run (not persisted)."""
    generation: int
    input_text: Optional[str] = None
    reply_text: Optional[str] = None
    outbound_audio: bytes = b""
    frames_sent: int = 0


@dataclass(frozen=True)
class Classification:
    category: str
    urgency: str


@dataclass(frozen=True)
class TicketRecord:
    name: Optional[str]
    phone: Optional[str]
    category: str
    urgency: str
    reason_text: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phone": self.phone,
            "category": self.category,
            "urgency": self.urgency,
            "reasonText": self.reason_text,
        }


@dataclass
class CallSession:
    """Complete session state for a call."""
    # Unknown until the transport's start event confirms it
    session_id: Optional[str] = None
    stage: Stage = Stage.IDENTIFY

    # Turn ownership
    speaking: bool = False
    turn_generation: int = 0

    # Aggregation
    transcript_buffer: List[str] = field(default_factory=list)
    last_final_ts: Optional[float] = None

    # Dialogue state
    greeted: bool = False
    caller_identity: Optional[str] = None
    caller_display_name: Optional[str] = None
    caller_phone: Optional[str] = None
    captured_reason: Optional[str] = None
    ticket_submitted: bool = False
    farewell_spoken: bool = False

    closed: bool = False
    created_at: float = field(default_factory=time.time)

    def advance_stage(self, target: Stage) -> None:
        """Move forward along IDENTIFY -> REASON -> DONE; never backwards."""
        if _STAGE_ORDER[target] < _STAGE_ORDER[self.stage]:
            raise ValueError(f"Illegal stage transition {self.stage.value} -> {target.value}")
        self.stage = target

    def begin_turn(self) -> int:
        """Take ownership of the speaking flag and return the new generation."""
        if self.speaking:
            raise RuntimeError("A turn is already active for this session")
        self.speaking = True
        self.turn_generation += 1
        return self.turn_generation

    def release_turn(self, generation: int) -> None:
        # A cancelled turn's release must not clear a newer turn's flag
        if generation == self.turn_generation:
            self.speaking = False

    def cancel_turn(self) -> int:
        """Invalidate the active turn (barge-in). Returns the new generation."""
        self.speaking = False
        self.turn_generation += 1
        return self.turn_generation

    def is_current(self, generation: int) -> bool:
        return generation == self.turn_generation and not self.closed
