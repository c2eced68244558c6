"""
Turn executor: runs one conversational turn end to end.

stage logic -> synthesizer -> transcoder -> playback scheduler

A turn owns the session's ``speaking`` flag from the moment ``start`` is
called until its task finishes, whatever the exit path. Vendor failures and
timeouts end the turn quietly; cancellation (barge-in, hang-up) propagates.
"""

from __future__ import annotations

import asyncio
import functools
import time
from typing import Optional

from ..config import TimeoutsConfig
from ..logging_config import get_logger
from ..pipelines.base import AdapterError, SynthesizerComponent, TranscoderComponent
from .events import OutboundSink
from .models import CallSession, Turn
from .playback import PlaybackScheduler
from .stages import DialogueFlow

logger = get_logger(__name__)


class TurnExecutor:
    def __init__(
        self,
        flow: DialogueFlow,
        synthesizer: SynthesizerComponent,
        transcoder: TranscoderComponent,
        playback: PlaybackScheduler,
        timeouts: Optional[TimeoutsConfig] = None,
    ):
        self._flow = flow
        self._synthesizer = synthesizer
        self._transcoder = transcoder
        self._playback = playback
        self._timeouts = timeouts or TimeoutsConfig()

    def start(
        self,
        session: CallSession,
        sink: OutboundSink,
        *,
        utterance: Optional[str] = None,
        prompt: Optional[str] = None,
    ) -> "asyncio.Task[Turn]":
        """
        Begin a turn for either a caller utterance or a fixed prompt.

        Raises RuntimeError if the session already has an active turn.
        """
        generation = session.begin_turn()
        task = asyncio.create_task(self._run(session, sink, generation, utterance, prompt))
        task.add_done_callback(functools.partial(self._on_done, session, generation))
        return task

    @staticmethod
    def _on_done(session: CallSession, generation: int, task: asyncio.Task) -> None:
        # Backstop for a task cancelled before its first step; _run releases otherwise
        session.release_turn(generation)
        if task.cancelled():
            logger.debug("Turn cancelled", call_id=session.session_id, generation=generation)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Turn ended with unexpected error",
                call_id=session.session_id,
                generation=generation,
                error=str(exc) or type(exc).__name__,
                exc_info=exc,
            )

    async def _run(
        self,
        session: CallSession,
        sink: OutboundSink,
        generation: int,
        utterance: Optional[str],
        prompt: Optional[str],
    ) -> Turn:
        try:
            return await self._execute(session, sink, generation, utterance, prompt)
        finally:
            # Released before the task is marked done, so speaking never outlives the turn
            session.release_turn(generation)

    async def _execute(
        self,
        session: CallSession,
        sink: OutboundSink,
        generation: int,
        utterance: Optional[str],
        prompt: Optional[str],
    ) -> Turn:
        turn = Turn(generation=generation, input_text=utterance)
        call_id = session.session_id
        started_at = time.perf_counter()
        try:
            if prompt is not None:
                reply = prompt
            else:
                outcome = await self._flow.handle(session, utterance or "")
                reply = outcome.reply
            turn.reply_text = reply
            if not reply or not session.is_current(generation):
                return turn

            encoded = await asyncio.wait_for(
                self._synthesizer.synthesize(call_id, reply, {}),
                timeout=self._timeouts.synthesizer_sec,
            )
            if not encoded:
                logger.warning("Synthesizer produced no audio", call_id=call_id, generation=generation)
                return turn
            audio = await asyncio.wait_for(
                self._transcoder.transcode(call_id, encoded),
                timeout=self._timeouts.transcoder_sec,
            )
            turn.outbound_audio = audio
            turn.frames_sent = await self._playback.play(session, sink, audio, generation)
        except (AdapterError, asyncio.TimeoutError) as exc:
            logger.error(
                "Turn failed",
                call_id=call_id,
                generation=generation,
                stage=session.stage.value,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )
            return turn

        logger.info(
            "Turn completed",
            call_id=call_id,
            generation=generation,
            stage=session.stage.value,
            frames_sent=turn.frames_sent,
            latency_ms=round((time.perf_counter() - started_at) * 1000.0, 2),
        )
        return turn
