"""
Media stream server.

Serves the Twilio-style bidirectional media websocket on ``server.media_path``
(default ``/ws-media``) plus a plain ``OK`` on ``/`` and ``/health``. Every
websocket connection gets its own SessionOrchestrator; the vendor adapters
are shared across calls and started/stopped with the server.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from aiohttp import WSMsgType, web

from .config import AppConfig
from .core.events import OutboundEvent, StopEvent, parse_inbound_event
from .core.orchestrator import SessionOrchestrator
from .core.ticket_sink import HttpTicketSink
from .logging_config import get_logger
from .pipelines.base import (
    RecognizerComponent,
    ResponderComponent,
    SynthesizerComponent,
    TranscoderComponent,
)
from .pipelines.deepgram import DeepgramRecognizerAdapter
from .pipelines.elevenlabs import ElevenLabsSynthesizerAdapter
from .pipelines.ffmpeg import FFmpegTranscoderAdapter
from .pipelines.openai import OpenAIResponderAdapter

logger = get_logger(__name__)


class WebSocketSink:
    """Outbound sink writing JSON envelopes to an aiohttp websocket."""

    def __init__(self, ws: web.WebSocketResponse):
        self._ws = ws

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def send(self, event: OutboundEvent) -> None:
        await self._ws.send_json(event.to_wire())


@dataclass
class Components:
    recognizer: RecognizerComponent
    responder: ResponderComponent
    synthesizer: SynthesizerComponent
    transcoder: TranscoderComponent
    ticket_sink: Any

    def all(self):
        return (self.recognizer, self.responder, self.synthesizer, self.transcoder, self.ticket_sink)


def build_components(config: AppConfig) -> Components:
    providers = config.providers
    return Components(
        recognizer=DeepgramRecognizerAdapter("deepgram_stt", config, providers.deepgram),
        responder=OpenAIResponderAdapter("openai_llm", config, providers.openai),
        synthesizer=ElevenLabsSynthesizerAdapter("elevenlabs_tts", config, providers.elevenlabs),
        transcoder=FFmpegTranscoderAdapter("ffmpeg_transcoder", config, config.transcoder, config.playback),
        ticket_sink=HttpTicketSink(config.ticket),
    )


class MediaServer:
    def __init__(self, config: AppConfig, components: Optional[Components] = None):
        self.config = config
        self.components = components or build_components(config)
        self.active_sessions: Dict[int, SessionOrchestrator] = {}
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(self.config.server.media_path, self._media_handler)
        app.router.add_get('/', self._ok_handler)
        app.router.add_get('/health', self._ok_handler)
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    async def _on_startup(self, app: web.Application) -> None:
        for component in self.components.all():
            await component.start()
        logger.info("Media server components started", media_path=self.config.server.media_path)

    async def _on_cleanup(self, app: web.Application) -> None:
        for orchestrator in list(self.active_sessions.values()):
            await orchestrator.close(reason="shutdown")
        for component in self.components.all():
            await component.stop()
        logger.info("Media server components stopped")

    async def _ok_handler(self, request: web.Request) -> web.Response:
        return web.Response(text="OK", status=200)

    async def _media_handler(self, request: web.Request) -> web.StreamResponse:
        ws = web.WebSocketResponse(heartbeat=30.0)
        if not ws.can_prepare(request).ok:
            return web.Response(text="OK", status=200)
        await ws.prepare(request)

        components = self.components
        orchestrator = SessionOrchestrator(
            self.config,
            recognizer=components.recognizer,
            responder=components.responder,
            synthesizer=components.synthesizer,
            transcoder=components.transcoder,
            ticket_sink=components.ticket_sink,
            sink=WebSocketSink(ws),
        )
        key = id(orchestrator)
        self.active_sessions[key] = orchestrator
        run_task = asyncio.create_task(orchestrator.run())
        logger.info("Media websocket connected", remote=request.remote, active_sessions=len(self.active_sessions))

        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT:
                    event = parse_inbound_event(msg.data)
                    if event is not None:
                        orchestrator.submit(event)
                        if isinstance(event, StopEvent):
                            break
                elif msg.type == WSMsgType.ERROR:
                    logger.warning("Media websocket error", error=str(ws.exception()))
                    break
        finally:
            orchestrator.submit(StopEvent())
            await asyncio.wait({run_task})
            if not orchestrator.session.closed:
                await orchestrator.close(reason="disconnect")
            self.active_sessions.pop(key, None)
            if not ws.closed:
                await ws.close()
            logger.info(
                "Media websocket closed",
                call_id=orchestrator.session.session_id,
                active_sessions=len(self.active_sessions),
            )
        return ws

    async def start(self) -> None:
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.server.host, self.config.server.port)
        await site.start()
        logger.info(
            "Media server listening",
            host=self.config.server.host,
            port=self.config.server.port,
            media_path=self.config.server.media_path,
        )

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
