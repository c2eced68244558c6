"""
Real-time paced playback of outbound audio.

Audio is cut into fixed-size frames (160 bytes for 20 ms of 8 kHz μ-law)
and written to the outbound sink on an absolute cadence. Before every frame
the scheduler re-checks that the sink is open and that the session is still
on the same turn generation and stream id; any mismatch ends playback
silently, which is how barge-in and hang-up stop audio within one frame.
"""

import asyncio
import time
from typing import Iterator

from ..logging_config import get_logger
from .events import OutboundMedia, OutboundSink
from .models import CallSession

logger = get_logger(__name__)


class PlaybackScheduler:
    def __init__(self, sample_rate_hz: int = 8000, frame_duration_ms: int = 20, bytes_per_sample: int = 1):
        self.sample_rate_hz = int(sample_rate_hz)
        self.frame_duration_ms = int(frame_duration_ms)
        self.bytes_per_sample = int(bytes_per_sample)

    @property
    def frame_bytes(self) -> int:
        return max(self.bytes_per_sample, int(self.sample_rate_hz * (self.frame_duration_ms / 1000.0) * self.bytes_per_sample))

    @property
    def frame_seconds(self) -> float:
        return self.frame_duration_ms / 1000.0

    def split_frames(self, audio: bytes) -> Iterator[bytes]:
        """Fixed-size frames; a shorter trailing frame is emitted as-is."""
        size = self.frame_bytes
        for idx in range(0, len(audio or b""), size):
            yield audio[idx : idx + size]

    def frame_count(self, audio: bytes) -> int:
        size = self.frame_bytes
        return (len(audio or b"") + size - 1) // size

    async def play(self, session: CallSession, sink: OutboundSink, audio: bytes, generation: int) -> int:
        """Send audio frames at real-time cadence. Returns the number of frames sent."""
        session_id = session.session_id
        if not audio or not session_id:
            return 0

        tick_seconds = self.frame_seconds
        total = self.frame_count(audio)
        sent = 0
        next_tick = time.perf_counter()
        started_at = next_tick

        for frame in self.split_frames(audio):
            now = time.perf_counter()
            sleep_for = next_tick - now
            if sleep_for > 0:
                await asyncio.sleep(sleep_for)
            else:
                next_tick = now

            if not sink.is_open or session.session_id != session_id or not session.is_current(generation):
                logger.debug(
                    "Playback stopped",
                    call_id=session_id,
                    generation=generation,
                    frames_sent=sent,
                    frames_total=total,
                )
                return sent

            try:
                await sink.send(OutboundMedia(session_id=session_id, payload=frame))
            except ConnectionError as exc:
                logger.debug("Playback sink closed while sending", call_id=session_id, error=str(exc))
                return sent
            sent += 1

            next_tick += tick_seconds
            now_after = time.perf_counter()
            # More than a frame behind: resynchronise instead of bursting
            if next_tick < now_after - tick_seconds:
                next_tick = now_after

        logger.debug(
            "Playback completed",
            call_id=session_id,
            generation=generation,
            frames_sent=sent,
            duration_ms=round((time.perf_counter() - started_at) * 1000.0, 2),
        )
        return sent
