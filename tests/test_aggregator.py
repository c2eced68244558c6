import pytest

from voicedesk.core.aggregator import AggregatorDecision, TranscriptAggregator
from voicedesk.core.models import CallSession, TranscriptFragment


def _final(text, ts, eos=False):
    return TranscriptFragment(text=text, is_final=True, is_end_of_speech=eos, timestamp=ts)


def _interim(text, ts):
    return TranscriptFragment(text=text, is_final=False, timestamp=ts)


class TestOnFragment:

    def test_final_fragment_buffered(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")

        decision = agg.on_fragment(session, _final("no puedo", 10.0))

        assert decision == AggregatorDecision.NONE
        assert session.transcript_buffer == ["no puedo"]
        assert session.last_final_ts == 10.0

    def test_end_of_speech_ends_turn(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")

        agg.on_fragment(session, _final("no puedo", 10.0))
        decision = agg.on_fragment(session, _final("entrar al portal", 10.2, eos=True))

        assert decision == AggregatorDecision.END_OF_TURN
        assert agg.capture(session) == "no puedo entrar al portal"
        assert session.transcript_buffer == []

    def test_interim_while_idle_ignored(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")

        assert agg.on_fragment(session, _interim("no pue", 10.0)) == AggregatorDecision.NONE
        assert session.transcript_buffer == []

    def test_interim_while_speaking_is_barge_in(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        session.begin_turn()

        assert agg.on_fragment(session, _interim("espere", 10.0)) == AggregatorDecision.BARGE_IN
        assert session.transcript_buffer == []

    def test_final_while_speaking_discarded(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        session.begin_turn()

        assert agg.on_fragment(session, _final("eco de la respuesta", 10.0, eos=True)) == AggregatorDecision.NONE
        assert session.transcript_buffer == []

    def test_empty_final_with_end_of_speech(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")

        assert agg.on_fragment(session, _final("", 10.0, eos=True)) == AggregatorDecision.END_OF_TURN
        assert agg.capture(session) == ""

    def test_late_empty_final_ends_turn_after_silence(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        agg.on_fragment(session, _final("tengo un problema", 10.0))

        assert agg.on_fragment(session, _final("", 10.5)) == AggregatorDecision.NONE
        assert agg.on_fragment(session, _final("", 10.8)) == AggregatorDecision.END_OF_TURN
        assert agg.capture(session) == "tengo un problema"


class TestEndOfTurnLaw:

    def test_silence_boundary_is_strict(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        agg.on_fragment(session, _final("hola", 10.0))

        assert agg.silence_elapsed(session, 10.5) is False
        assert agg.silence_elapsed(session, 10.7) is False
        assert agg.silence_elapsed(session, 10.701) is True

    def test_silence_requires_buffered_text(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1", last_final_ts=10.0)

        assert agg.silence_elapsed(session, 20.0) is False

    @pytest.mark.parametrize(
        "eos,now,expected",
        [
            (True, 10.1, True),
            (False, 10.1, False),
            (False, 10.8, True),
        ],
    )
    def test_is_end_of_turn(self, eos, now, expected):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        agg.on_fragment(session, _final("hola", 10.0))

        fragment = _final("", 10.1, eos=eos)
        assert agg.is_end_of_turn(session, fragment, now) is expected

    def test_remaining_silence(self):
        agg = TranscriptAggregator(700)
        session = CallSession(session_id="CA1")
        agg.on_fragment(session, _final("hola", 10.0))

        assert agg.remaining_silence(session, 10.2) == pytest.approx(0.5)
        assert agg.remaining_silence(session, 11.0) == 0.0
