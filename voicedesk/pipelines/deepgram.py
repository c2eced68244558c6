"""
Deepgram live streaming recognizer adapter.

Inbound call audio (8 kHz μ-law by default) is forwarded verbatim over the
Deepgram ``/v1/listen`` websocket. Results are mapped to TranscriptFragment:

- ``Results`` with ``is_final`` false  -> interim fragment (drives barge-in)
- ``Results`` with ``is_final`` true   -> final fragment
- ``speech_final`` / ``UtteranceEnd``  -> ``is_end_of_speech``
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import websockets

from ..config import AppConfig, DeepgramProviderConfig
from ..core.models import TranscriptFragment
from ..logging_config import get_logger
from .base import RecognizerComponent, RecognizerError

logger = get_logger(__name__)


def _merge_dicts(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    merged = dict(base)
    if override:
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = _merge_dicts(merged[key], value)
            elif value is not None:
                merged[key] = value
    return merged


def _bool_param(value: Any) -> str:
    return "true" if bool(value) else "false"


def build_listen_url(options: Dict[str, Any]) -> str:
    """Build the streaming ``/v1/listen`` URL with query parameters."""
    base_url = options.get("base_url") or "wss://api.deepgram.com"
    if base_url.startswith("https://"):
        base_url = base_url.replace("https://", "wss://", 1)
    elif base_url.startswith("http://"):
        base_url = base_url.replace("http://", "ws://", 1)

    parsed = urlparse(base_url)
    if not parsed.path or parsed.path == "/":
        path = "/v1/listen"
    elif "/v1/listen" in parsed.path:
        path = parsed.path
    else:
        path = parsed.path.rstrip("/") + "/v1/listen"

    query_params = {
        "model": options.get("model", "nova-2"),
        "language": options.get("language", "es"),
        "encoding": options.get("encoding", "mulaw"),
        "sample_rate": str(options.get("sample_rate", 8000)),
        "channels": "1",
        "interim_results": _bool_param(options.get("interim_results", True)),
        "smart_format": _bool_param(options.get("smart_format", True)),
        "punctuate": "true",
    }
    if options.get("endpointing_ms"):
        query_params["endpointing"] = str(int(options["endpointing_ms"]))
    if options.get("utterance_end_ms"):
        # Deepgram requires interim_results for utterance_end_ms
        query_params["utterance_end_ms"] = str(int(options["utterance_end_ms"]))
        query_params["vad_events"] = "true"

    existing = dict(parse_qsl(parsed.query))
    existing.update(query_params)
    return urlunparse(parsed._replace(path=path, query=urlencode(existing)))


def fragment_from_message(message: Dict[str, Any], now: Optional[float] = None) -> Optional[TranscriptFragment]:
    """Map one Deepgram streaming message to a fragment; None when there is nothing to report."""
    timestamp = time.monotonic() if now is None else now
    msg_type = message.get("type")

    if msg_type == "UtteranceEnd":
        return TranscriptFragment(text="", is_final=True, is_end_of_speech=True, timestamp=timestamp)

    if msg_type != "Results":
        return None

    try:
        alternatives = (message.get("channel") or {}).get("alternatives") or []
        transcript = (alternatives[0].get("transcript") or "").strip() if alternatives else ""
    except (AttributeError, IndexError, TypeError):
        transcript = ""
    if not transcript:
        return None

    return TranscriptFragment(
        text=transcript,
        is_final=bool(message.get("is_final", False)),
        is_end_of_speech=bool(message.get("speech_final", False)),
        timestamp=timestamp,
    )


@dataclass
class _StreamState:
    """Tracks per-call streaming state."""
    options: Dict[str, Any]
    websocket: Optional[Any] = None
    fragment_queue: Optional[asyncio.Queue] = None
    receiver_task: Optional[asyncio.Task] = None
    active: bool = True


class DeepgramRecognizerAdapter(RecognizerComponent):
    def __init__(
        self,
        component_key: str,
        app_config: AppConfig,
        provider_config: DeepgramProviderConfig,
        options: Optional[Dict[str, Any]] = None,
        *,
        connect=None,
    ):
        self.component_key = component_key
        self._app_config = app_config
        self._provider_defaults = provider_config
        self._pipeline_defaults = options or {}
        self._connect = connect or websockets.connect
        self._streams: Dict[str, _StreamState] = {}

    async def start(self) -> None:
        logger.debug(
            "Deepgram recognizer adapter initialized",
            component=self.component_key,
            default_model=self._provider_defaults.model,
            language=self._provider_defaults.language,
        )

    async def stop(self) -> None:
        for call_id in list(self._streams.keys()):
            await self.close_call(call_id)

    async def start_stream(self, call_id: str, options: Dict[str, Any]) -> None:
        """Open the websocket streaming connection to Deepgram."""
        if call_id in self._streams:
            await self.close_call(call_id)

        merged = _merge_dicts(self._compose_options(None), options or {})
        api_key = merged.get("api_key")
        if not api_key:
            raise RecognizerError("Deepgram streaming requires an API key", component=self.component_key)

        ws_url = build_listen_url(merged)
        logger.info(
            "Deepgram opening streaming session",
            call_id=call_id,
            url=ws_url,
            component=self.component_key,
        )

        headers = [
            ("Authorization", f"Token {api_key}"),
            ("User-Agent", "voicedesk/1.0"),
        ]
        try:
            websocket = await asyncio.wait_for(
                self._connect(
                    ws_url,
                    additional_headers=headers,
                    max_size=16 * 1024 * 1024,
                    ping_interval=20,
                    ping_timeout=10,
                ),
                timeout=float(merged.get("connect_timeout_sec", 5.0)),
            )
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as exc:
            logger.error(
                "Failed to connect to Deepgram streaming",
                call_id=call_id,
                error=str(exc) or type(exc).__name__,
            )
            raise RecognizerError(f"Deepgram streaming connection failed: {exc}", component=self.component_key) from exc

        state = _StreamState(options=merged, websocket=websocket, fragment_queue=asyncio.Queue())
        state.receiver_task = asyncio.create_task(self._receive_loop(call_id, state))
        self._streams[call_id] = state

        logger.info("Deepgram streaming session opened", call_id=call_id, model=merged.get("model"))

    async def send_audio(self, call_id: str, chunk: bytes) -> None:
        """Forward one inbound frame as-is."""
        state = self._streams.get(call_id)
        if not state or not state.websocket or not state.active or not chunk:
            return
        try:
            await state.websocket.send(chunk)
        except websockets.ConnectionClosed as exc:
            logger.warning(
                "Deepgram streaming websocket closed while sending audio",
                call_id=call_id,
                error=str(exc),
            )
            state.active = False

    async def iter_results(self, call_id: str) -> AsyncIterator[TranscriptFragment]:
        """Yield fragments as they arrive; ends when the stream closes."""
        state = self._streams.get(call_id)
        if not state or not state.fragment_queue:
            return
        while True:
            fragment = await state.fragment_queue.get()
            if fragment is None:
                break
            yield fragment

    async def stop_stream(self, call_id: str) -> None:
        """Ask Deepgram to flush and close, then release the connection."""
        state = self._streams.get(call_id)
        if not state:
            return
        if state.websocket and state.active:
            try:
                await state.websocket.send(json.dumps({"type": "CloseStream"}))
            except websockets.ConnectionClosed as exc:
                logger.debug("Deepgram websocket already closed before CloseStream", call_id=call_id, error=str(exc))
        await self.close_call(call_id)

    async def close_call(self, call_id: str) -> None:
        state = self._streams.pop(call_id, None)
        if not state:
            return
        state.active = False
        if state.receiver_task and not state.receiver_task.done():
            state.receiver_task.cancel()
            await asyncio.wait({state.receiver_task})
            # A receiver cancelled before its first step never posts the end marker
            state.fragment_queue.put_nowait(None)
        if state.websocket:
            try:
                await state.websocket.close()
            except websockets.WebSocketException as exc:
                logger.debug("Deepgram websocket close error", call_id=call_id, error=str(exc))
        logger.info("Deepgram streaming session closed", call_id=call_id)

    async def _receive_loop(self, call_id: str, state: _StreamState) -> None:
        try:
            async for message in state.websocket:
                if not state.active:
                    break
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    continue
                if not isinstance(data, dict):
                    continue

                fragment = fragment_from_message(data)
                if fragment is None:
                    continue
                logger.debug(
                    "Deepgram transcript received",
                    call_id=call_id,
                    transcript_preview=fragment.text[:50],
                    is_final=fragment.is_final,
                    end_of_speech=fragment.is_end_of_speech,
                )
                state.fragment_queue.put_nowait(fragment)
        except websockets.ConnectionClosed:
            logger.info("Deepgram streaming websocket closed", call_id=call_id)
        finally:
            state.active = False
            # Signal end to consumers of iter_results
            state.fragment_queue.put_nowait(None)

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        defaults = self._provider_defaults

        def pick(key: str, default: Any) -> Any:
            return runtime_options.get(key, self._pipeline_defaults.get(key, default))

        return {
            "api_key": pick("api_key", defaults.api_key),
            "base_url": pick("base_url", defaults.base_url),
            "model": pick("model", defaults.model),
            "language": pick("language", defaults.language),
            "encoding": pick("encoding", defaults.encoding),
            "sample_rate": pick("sample_rate", defaults.sample_rate_hz),
            "interim_results": pick("interim_results", defaults.interim_results),
            "endpointing_ms": pick("endpointing_ms", defaults.endpointing_ms),
            "utterance_end_ms": pick("utterance_end_ms", defaults.utterance_end_ms),
            "smart_format": pick("smart_format", defaults.smart_format),
            "connect_timeout_sec": pick("connect_timeout_sec", defaults.connect_timeout_sec),
        }
