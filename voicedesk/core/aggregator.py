"""
Transcript aggregation and end-of-turn detection.

Final recognizer fragments are buffered on the session until either the
recognizer marks end of speech or the caller has been silent for longer
than the configured threshold. Interim fragments that arrive while the
system is speaking signal a barge-in.
"""

from enum import Enum
from typing import Optional

from ..logging_config import get_logger
from .models import CallSession, TranscriptFragment

logger = get_logger(__name__)


class AggregatorDecision(str, Enum):
    NONE = "none"
    END_OF_TURN = "end_of_turn"
    BARGE_IN = "barge_in"


class TranscriptAggregator:
    def __init__(self, silence_threshold_ms: int = 700):
        self.silence_threshold_ms = int(silence_threshold_ms)

    @property
    def silence_threshold_sec(self) -> float:
        return self.silence_threshold_ms / 1000.0

    def on_fragment(self, session: CallSession, fragment: TranscriptFragment) -> AggregatorDecision:
        if session.speaking:
            if not fragment.is_final:
                # Interim text while playing is the caller talking over us
                return AggregatorDecision.BARGE_IN
            logger.debug(
                "Discarding final transcript received while speaking",
                call_id=session.session_id,
                preview=fragment.text[:40],
            )
            return AggregatorDecision.NONE

        if not fragment.is_final:
            return AggregatorDecision.NONE

        text = fragment.text.strip()
        if text:
            session.transcript_buffer.append(text)
            session.last_final_ts = fragment.timestamp

        if self.is_end_of_turn(session, fragment, fragment.timestamp):
            return AggregatorDecision.END_OF_TURN
        return AggregatorDecision.NONE

    def silence_elapsed(self, session: CallSession, now: float) -> bool:
        if not session.transcript_buffer or session.last_final_ts is None:
            return False
        return (now - session.last_final_ts) * 1000.0 > self.silence_threshold_ms

    def is_end_of_turn(self, session: CallSession, fragment: Optional[TranscriptFragment], now: float) -> bool:
        """End-of-turn law: end-of-speech marker OR buffered text older than the threshold."""
        if fragment is not None and fragment.is_end_of_speech:
            return True
        return self.silence_elapsed(session, now)

    def remaining_silence(self, session: CallSession, now: float) -> float:
        """Seconds until silence_elapsed can become true (0 when already elapsed)."""
        if session.last_final_ts is None:
            return self.silence_threshold_sec
        return max(0.0, self.silence_threshold_sec - (now - session.last_final_ts))

    def capture(self, session: CallSession) -> str:
        text = " ".join(part for part in session.transcript_buffer if part)
        session.transcript_buffer.clear()
        session.last_final_ts = None
        return text.strip()
