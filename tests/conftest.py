import asyncio
import time
from typing import Any, Dict, List, Optional

import pytest

from voicedesk.config import AppConfig
from voicedesk.core.events import OutboundClear, OutboundMedia
from voicedesk.core.models import Classification, TranscriptFragment
from voicedesk.pipelines.base import (
    RecognizerComponent,
    ResponderComponent,
    ResponderReply,
    SynthesizerComponent,
    TranscoderComponent,
)

OVERRIDE_ENV_VARS = (
    "PORT", "HOST", "SILENCE_THRESHOLD_MS", "FRAME_DURATION_MS", "OUTBOUND_SAMPLE_RATE",
    "OUTBOUND_CODEC", "TICKET_SINK_URL", "ELEVENLABS_VOICE_ID", "ELEVENLABS_MODEL_ID",
    "OPENAI_CHAT_MODEL", "OPENAI_BASE_URL", "DEEPGRAM_MODEL", "DEEPGRAM_LANGUAGE",
    "FFMPEG_PATH", "DIALOGUE_FLOW", "DEEPGRAM_API_KEY", "OPENAI_API_KEY",
    "ELEVENLABS_API_KEY", "EVENLABS_API_KEY", "LOG_LEVEL", "VOICEDESK_CONFIG",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in OVERRIDE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class FakeSink:
    def __init__(self):
        self.events: List[Any] = []
        self.sent_at: List[float] = []
        self.open = True

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, event) -> None:
        if not self.open:
            raise ConnectionResetError("sink closed")
        self.events.append(event)
        self.sent_at.append(time.perf_counter())

    @property
    def media(self) -> List[OutboundMedia]:
        return [e for e in self.events if isinstance(e, OutboundMedia)]

    @property
    def clears(self) -> List[OutboundClear]:
        return [e for e in self.events if isinstance(e, OutboundClear)]


class FakeRecognizer(RecognizerComponent):
    def __init__(self):
        self.queues: Dict[str, asyncio.Queue] = {}
        self.audio: List[bytes] = []
        self.stopped: List[str] = []
        self.starts: List[str] = []

    async def start_stream(self, call_id: str, options: Dict[str, Any]) -> None:
        self.starts.append(call_id)
        self.queues[call_id] = asyncio.Queue()

    async def send_audio(self, call_id: str, chunk: bytes) -> None:
        self.audio.append(chunk)

    async def iter_results(self, call_id: str):
        queue = self.queues[call_id]
        while True:
            fragment = await queue.get()
            if fragment is None:
                break
            yield fragment

    async def stop_stream(self, call_id: str) -> None:
        self.stopped.append(call_id)
        queue = self.queues.get(call_id)
        if queue is not None:
            queue.put_nowait(None)

    def push(self, call_id: str, text: str, *, is_final: bool = True, end_of_speech: bool = False,
             timestamp: Optional[float] = None) -> None:
        fragment = TranscriptFragment(
            text=text,
            is_final=is_final,
            is_end_of_speech=end_of_speech,
            timestamp=time.monotonic() if timestamp is None else timestamp,
        )
        self.queues[call_id].put_nowait(fragment)


class FakeResponder(ResponderComponent):
    def __init__(self, reply: str = "Gracias, he registrado su solicitud.",
                 classification: Optional[Classification] = None,
                 classify_error: Optional[Exception] = None):
        self.reply = reply
        self.classification = classification or Classification(category="portal_access", urgency="medium")
        self.classify_error = classify_error
        self.generate_calls: List[str] = []
        self.classify_calls: List[str] = []

    async def generate(self, call_id, utterance, context, options) -> ResponderReply:
        self.generate_calls.append(utterance)
        return ResponderReply(text=self.reply)

    async def classify(self, call_id, reason, context, options) -> Classification:
        self.classify_calls.append(reason)
        if self.classify_error is not None:
            raise self.classify_error
        return self.classification


class FakeSynthesizer(SynthesizerComponent):
    def __init__(self):
        self.texts: List[str] = []

    async def synthesize(self, call_id: str, text: str, options: Dict[str, Any]) -> bytes:
        self.texts.append(text)
        return text.encode("utf-8")


class FakeTranscoder(TranscoderComponent):
    """Emits a fixed number of μ-law bytes per input byte."""

    def __init__(self, bytes_per_input_byte: int = 4, fixed_output: Optional[int] = None):
        self.bytes_per_input_byte = bytes_per_input_byte
        self.fixed_output = fixed_output
        self.outputs: List[bytes] = []

    async def transcode(self, call_id: str, audio: bytes) -> bytes:
        size = self.fixed_output if self.fixed_output is not None else len(audio) * self.bytes_per_input_byte
        out = b"\xff" * size
        self.outputs.append(out)
        return out


class FakeTicketSink:
    def __init__(self, result: bool = True):
        self.result = result
        self.records = []

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def submit(self, call_id, record) -> bool:
        self.records.append((call_id, record))
        return self.result


async def _wait_until(predicate, timeout: float = 3.0, interval: float = 0.005) -> None:
    deadline = time.perf_counter() + timeout
    while not predicate():
        if time.perf_counter() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    return _wait_until


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def responder() -> FakeResponder:
    return FakeResponder()


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def ticket_sink() -> FakeTicketSink:
    return FakeTicketSink()
