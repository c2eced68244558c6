"""
Per-call session orchestrator.

Each call is a single logical actor: transport events, recognizer fragments,
silence-timer ticks and stream-loss notices are all posted to one
asyncio.Queue and handled in order by ``run()``. Nothing else mutates the
CallSession except the active turn task started from here, so no locking is
required.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..config import AppConfig
from ..logging_config import get_logger, set_correlation_id
from ..pipelines.base import (
    AdapterError,
    RecognizerComponent,
    ResponderComponent,
    SynthesizerComponent,
    TranscoderComponent,
)
from .aggregator import AggregatorDecision, TranscriptAggregator
from .events import MediaEvent, OutboundClear, OutboundSink, StartEvent, StopEvent
from .models import CallSession, TranscriptFragment
from .playback import PlaybackScheduler
from .stages import DialogueFlow
from .turn_executor import TurnExecutor

logger = get_logger(__name__)

# Keeps the strictly-greater silence comparison true when the timer fires
_TIMER_SLACK_SEC = 0.005

# Per call; a vendor that keeps dropping the socket is not retried forever
_MAX_STREAM_RESTARTS = 3


@dataclass(frozen=True)
class SilenceTick:
    """Posted by the silence timer; checked on the session's own event path."""
    armed_at: float


@dataclass(frozen=True)
class StreamLost:
    """Posted by the fragment pump when the recognizer stream ends mid-call."""
    call_id: str


class _Shutdown:
    pass


_SHUTDOWN = _Shutdown()


class SessionOrchestrator:
    def __init__(
        self,
        config: AppConfig,
        *,
        recognizer: RecognizerComponent,
        responder: ResponderComponent,
        synthesizer: SynthesizerComponent,
        transcoder: TranscoderComponent,
        ticket_sink: Any,
        sink: OutboundSink,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._recognizer = recognizer
        self._sink = sink
        self._clock = clock

        self.session = CallSession()
        self.flow = DialogueFlow(config.dialogue, responder, ticket_sink, config.timeouts)
        self.flow.prepare(self.session)
        self.aggregator = TranscriptAggregator(config.turn.silence_threshold_ms)
        playback_cfg = config.playback
        self.playback = PlaybackScheduler(
            sample_rate_hz=playback_cfg.sample_rate_hz,
            frame_duration_ms=playback_cfg.frame_duration_ms,
            bytes_per_sample=playback_cfg.bytes_per_sample * playback_cfg.channels,
        )
        self.executor = TurnExecutor(self.flow, synthesizer, transcoder, self.playback, config.timeouts)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._turn_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._silence_handle: Optional[asyncio.TimerHandle] = None
        self._stream_open = False
        self._stream_restarts = 0
        self._closing = False

    # Event intake ---------------------------------------------------------------

    def submit(self, item: Any) -> None:
        """Queue a transport event, transcript fragment or timer tick."""
        if self._closing and not isinstance(item, _Shutdown):
            return
        self._queue.put_nowait(item)

    async def run(self) -> None:
        """Drain the session queue until the call stops."""
        while True:
            item = await self._queue.get()
            if isinstance(item, _Shutdown):
                break
            try:
                await self.dispatch(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Error handling session event",
                    call_id=self.session.session_id,
                    item_type=type(item).__name__,
                    error=str(exc),
                    exc_info=True,
                )
            if self.session.closed:
                break

    async def dispatch(self, item: Any) -> None:
        if isinstance(item, MediaEvent):
            await self._on_media(item)
        elif isinstance(item, TranscriptFragment):
            await self._on_fragment(item)
        elif isinstance(item, SilenceTick):
            await self._on_silence_tick(item)
        elif isinstance(item, StreamLost):
            await self._on_stream_lost(item)
        elif isinstance(item, StartEvent):
            await self._on_start(item)
        elif isinstance(item, StopEvent):
            await self.close(reason="stop")

    # Handlers -------------------------------------------------------------------

    async def _on_start(self, event: StartEvent) -> None:
        session = self.session
        if session.session_id is not None:
            logger.debug("Ignoring duplicate start event", call_id=session.session_id, new_id=event.session_id)
            return
        session.session_id = event.session_id
        session.caller_phone = event.caller_phone
        set_correlation_id(event.session_id)
        logger.info(
            "Call started",
            call_id=event.session_id,
            caller_phone=session.caller_phone,
            stage=session.stage.value,
        )

        await self._open_stream(event.session_id)

        if not session.greeted:
            session.greeted = True
            self._turn_task = self.executor.start(session, self._sink, prompt=self.flow.greeting_text())

    async def _open_stream(self, call_id: str) -> bool:
        try:
            await asyncio.wait_for(
                self._recognizer.start_stream(call_id, {}),
                timeout=self._config.timeouts.recognizer_connect_sec,
            )
        except (AdapterError, asyncio.TimeoutError) as exc:
            logger.error(
                "Recognizer stream unavailable; call continues without speech input",
                call_id=call_id,
                error=str(exc) or type(exc).__name__,
            )
            return False
        if self._closing:
            # close() ran while connecting and did not see this stream
            await self._recognizer.stop_stream(call_id)
            return False
        self._stream_open = True
        self._pump_task = asyncio.create_task(self._pump_fragments(call_id))
        return True

    async def _pump_fragments(self, call_id: str) -> None:
        async for fragment in self._recognizer.iter_results(call_id):
            self.submit(fragment)
        if self._closing:
            logger.debug("Recognizer results ended", call_id=call_id)
            return
        logger.warning("Recognizer stream ended mid-call", call_id=call_id)
        self.submit(StreamLost(call_id=call_id))

    async def _on_stream_lost(self, event: StreamLost) -> None:
        self._stream_open = False
        if self.session.closed:
            return
        if self._stream_restarts >= _MAX_STREAM_RESTARTS:
            logger.error(
                "Recognizer restart limit reached; call continues without speech input",
                call_id=event.call_id,
                restarts=self._stream_restarts,
            )
            return
        self._stream_restarts += 1
        if await self._open_stream(event.call_id):
            logger.info("Recognizer stream reopened", call_id=event.call_id, restarts=self._stream_restarts)

    async def _on_media(self, event: MediaEvent) -> None:
        if not self._stream_open or self.session.closed:
            return
        await self._recognizer.send_audio(self.session.session_id, event.payload)

    async def _on_fragment(self, fragment: TranscriptFragment) -> None:
        session = self.session
        decision = self.aggregator.on_fragment(session, fragment)
        if decision == AggregatorDecision.BARGE_IN:
            await self._barge_in()
        elif decision == AggregatorDecision.END_OF_TURN:
            await self._end_turn()
        elif fragment.is_final and session.transcript_buffer:
            self._arm_silence_timer()

    async def _on_silence_tick(self, tick: SilenceTick) -> None:
        session = self.session
        if session.speaking or not session.transcript_buffer:
            return
        now = self._clock()
        if self.aggregator.is_end_of_turn(session, None, now):
            await self._end_turn()
        else:
            self._arm_silence_timer()

    # Turn control ---------------------------------------------------------------

    def _arm_silence_timer(self) -> None:
        self._cancel_silence_timer()
        delay = self.aggregator.remaining_silence(self.session, self._clock()) + _TIMER_SLACK_SEC
        loop = asyncio.get_running_loop()
        self._silence_handle = loop.call_later(delay, self.submit, SilenceTick(armed_at=self._clock()))

    def _cancel_silence_timer(self) -> None:
        if self._silence_handle is not None:
            self._silence_handle.cancel()
            self._silence_handle = None

    async def _barge_in(self) -> None:
        session = self.session
        task = self._turn_task
        generation = session.cancel_turn()
        if task is not None and not task.done():
            task.cancel()
        logger.info("Barge-in: caller interrupted playback", call_id=session.session_id, generation=generation)
        if self._sink.is_open and session.session_id:
            await self._sink.send(OutboundClear(session_id=session.session_id))

    async def _await_previous_turn(self) -> None:
        task = self._turn_task
        if task is not None and not task.done():
            # asyncio.wait does not re-raise the task's CancelledError
            await asyncio.wait({task})

    async def _end_turn(self) -> None:
        self._cancel_silence_timer()
        session = self.session
        text = self.aggregator.capture(session)
        if not text:
            logger.debug("End of turn with no text; ignoring", call_id=session.session_id)
            return
        await self._await_previous_turn()
        if session.closed:
            return
        logger.info(
            "Caller turn captured",
            call_id=session.session_id,
            stage=session.stage.value,
            preview=text[:60],
        )
        self._turn_task = self.executor.start(session, self._sink, utterance=text)

    # Shutdown -------------------------------------------------------------------

    async def close(self, reason: str = "closed") -> None:
        """Tear down the call. Safe to call more than once."""
        if self._closing:
            return
        self._closing = True
        session = self.session
        session.closed = True
        self._cancel_silence_timer()

        task = self._turn_task
        if task is not None and not task.done():
            session.cancel_turn()
            task.cancel()
            await asyncio.wait({task})

        if self._stream_open and session.session_id:
            self._stream_open = False
            try:
                await self._recognizer.stop_stream(session.session_id)
            except AdapterError as exc:
                logger.warning("Recognizer stop failed", call_id=session.session_id, error=str(exc))

        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            await asyncio.wait({self._pump_task})

        await self.flow.drain()
        self._queue.put_nowait(_SHUTDOWN)
        logger.info(
            "Call ended",
            call_id=session.session_id,
            reason=reason,
            stage=session.stage.value,
            ticket_submitted=session.ticket_submitted,
            duration_sec=round(time.time() - session.created_at, 2),
        )
