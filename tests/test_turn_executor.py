import asyncio

import pytest

from voicedesk.config import DialogueConfig, TimeoutsConfig
from voicedesk.core.aggregator import AggregatorDecision, TranscriptAggregator
from voicedesk.core.models import CallSession, Stage, TranscriptFragment
from voicedesk.core.playback import PlaybackScheduler
from voicedesk.core.stages import DialogueFlow
from voicedesk.core.turn_executor import TurnExecutor
from voicedesk.pipelines.base import SynthesizerError


@pytest.fixture
def session():
    return CallSession(session_id="CA1", caller_phone="+34600111222")


def _executor(responder, ticket_sink, synthesizer, transcoder, timeouts=None):
    flow = DialogueFlow(DialogueConfig(), responder, ticket_sink, timeouts)
    return flow, TurnExecutor(flow, synthesizer, transcoder, PlaybackScheduler(), timeouts)


class TestTurnExecutor:

    @pytest.mark.asyncio
    async def test_prompt_turn(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        transcoder.fixed_output = 400
        _flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)

        task = executor.start(session, sink, prompt="Hola")
        assert session.speaking is True
        turn = await task
        await asyncio.sleep(0)

        assert synthesizer.texts == ["Hola"]
        assert turn.frames_sent == 3
        assert [len(m.payload) for m in sink.media] == [160, 160, 80]
        assert session.speaking is False
        assert responder.generate_calls == []

    @pytest.mark.asyncio
    async def test_speaking_released_when_task_finishes(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        transcoder.fixed_output = 160
        _flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)
        aggregator = TranscriptAggregator(700)

        task = executor.start(session, sink, prompt="Hola")
        while not task.done():
            await asyncio.sleep(0)

        # Read as soon as the task reports done
        assert session.speaking is False
        interim = TranscriptFragment(text="oiga", is_final=False, timestamp=1.0)
        assert aggregator.on_fragment(session, interim) == AggregatorDecision.NONE

    @pytest.mark.asyncio
    async def test_utterance_turn_advances_stage(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        transcoder.fixed_output = 160
        flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)
        flow.prepare(session)

        turn = await executor.start(session, sink, utterance="soy Juan Pérez")

        assert session.stage == Stage.REASON
        assert turn.reply_text == "Gracias, Juan. ¿Cuál es el motivo de su llamada?"
        assert synthesizer.texts == [turn.reply_text]

    @pytest.mark.asyncio
    async def test_silent_outcome_sends_nothing(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        _flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)
        session.advance_stage(Stage.DONE)

        turn = await executor.start(session, sink, utterance="una pregunta más")

        assert turn.reply_text is None
        assert synthesizer.texts == []
        assert sink.events == []

    @pytest.mark.asyncio
    async def test_second_turn_while_speaking_rejected(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        _flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)

        task = executor.start(session, sink, prompt="Hola")
        with pytest.raises(RuntimeError):
            executor.start(session, sink, prompt="Otra vez")
        await task

    @pytest.mark.asyncio
    async def test_cancel_before_first_step_releases_turn(self, session, sink, responder, ticket_sink, synthesizer, transcoder):
        _flow, executor = _executor(responder, ticket_sink, synthesizer, transcoder)

        task = executor.start(session, sink, prompt="Hola")
        task.cancel()
        await asyncio.wait({task})
        await asyncio.sleep(0)

        assert task.cancelled()
        assert session.speaking is False
        assert synthesizer.texts == []

    @pytest.mark.asyncio
    async def test_synthesizer_failure_ends_turn_quietly(self, session, sink, responder, ticket_sink, transcoder):
        class BrokenSynthesizer:
            async def synthesize(self, call_id, text, options):
                raise SynthesizerError("quota exceeded", component="elevenlabs_tts")

        flow = DialogueFlow(DialogueConfig(), responder, ticket_sink)
        flow.prepare(session)
        executor = TurnExecutor(flow, BrokenSynthesizer(), transcoder, PlaybackScheduler())

        turn = await executor.start(session, sink, prompt="Hola")
        await asyncio.sleep(0)

        assert turn.frames_sent == 0
        assert sink.events == []
        assert session.speaking is False
        assert session.stage == Stage.IDENTIFY

    @pytest.mark.asyncio
    async def test_transcoder_timeout_ends_turn_quietly(self, session, sink, responder, ticket_sink, synthesizer):
        class StuckTranscoder:
            async def transcode(self, call_id, audio):
                await asyncio.sleep(5)

        flow = DialogueFlow(DialogueConfig(), responder, ticket_sink)
        executor = TurnExecutor(flow, synthesizer, StuckTranscoder(), PlaybackScheduler(), TimeoutsConfig(transcoder_sec=0.05))

        turn = await executor.start(session, sink, prompt="Hola")

        assert turn.frames_sent == 0
        assert sink.events == []
