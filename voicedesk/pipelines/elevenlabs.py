"""
ElevenLabs REST text-to-speech adapter.

Returns the encoded audio (MP3 by default) exactly as ElevenLabs produced
it; conversion to the call leg format is the transcoder's job.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Callable, Dict, Optional

import aiohttp

from ..config import AppConfig, ElevenLabsProviderConfig
from ..logging_config import get_logger
from .base import SynthesizerComponent, SynthesizerError

logger = get_logger(__name__)


class ElevenLabsSynthesizerAdapter(SynthesizerComponent):
    def __init__(
        self,
        component_key: str,
        app_config: AppConfig,
        provider_config: ElevenLabsProviderConfig,
        options: Optional[Dict[str, Any]] = None,
        *,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self.component_key = component_key
        self._app_config = app_config
        self._provider_defaults = provider_config
        self._pipeline_defaults = options or {}
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        logger.debug(
            "ElevenLabs synthesizer adapter initialized",
            component=self.component_key,
            default_voice=self._provider_defaults.voice_id,
            model=self._provider_defaults.model_id,
        )

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def open_call(self, call_id: str, options: Dict[str, Any]) -> None:
        await self._ensure_session()

    async def synthesize(self, call_id: str, text: str, options: Dict[str, Any]) -> bytes:
        if not text or not text.strip():
            return b""

        merged = self._compose_options(options)
        api_key = merged.get("api_key")
        if not api_key:
            raise SynthesizerError("ElevenLabs synthesizer requires an API key", component=self.component_key)

        await self._ensure_session()
        assert self._session

        request_id = f"el-tts-{uuid.uuid4().hex[:12]}"
        url = f"{merged['base_url'].rstrip('/')}/text-to-speech/{merged['voice_id']}"
        params = {"output_format": merged["output_format"]}
        payload = {
            "text": text,
            "model_id": merged["model_id"],
            "voice_settings": {
                "stability": merged["stability"],
                "similarity_boost": merged["similarity_boost"],
            },
        }
        headers = {
            "xi-api-key": api_key,
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
        }

        logger.info(
            "ElevenLabs synthesis started",
            call_id=call_id,
            request_id=request_id,
            text_preview=text[:64],
            voice_id=merged["voice_id"],
            model_id=merged["model_id"],
        )

        started_at = time.perf_counter()
        timeout = aiohttp.ClientTimeout(total=merged["timeout_sec"])
        try:
            async with self._session.post(url, json=payload, params=params, headers=headers, timeout=timeout) as response:
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    logger.error(
                        "ElevenLabs synthesis failed",
                        call_id=call_id,
                        request_id=request_id,
                        status=response.status,
                        body_preview=body[:128],
                    )
                    raise SynthesizerError(
                        f"ElevenLabs synthesis failed with status {response.status}",
                        component=self.component_key,
                    )
                audio = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("ElevenLabs connection error", call_id=call_id, request_id=request_id, error=str(exc))
            raise SynthesizerError(f"ElevenLabs request failed: {exc}", component=self.component_key) from exc

        latency_ms = (time.perf_counter() - started_at) * 1000.0
        if len(audio) < int(merged["min_audio_bytes"]):
            logger.error(
                "ElevenLabs returned too little audio",
                call_id=call_id,
                request_id=request_id,
                output_bytes=len(audio),
            )
            raise SynthesizerError(
                f"ElevenLabs returned {len(audio)} bytes of audio",
                component=self.component_key,
            )

        logger.info(
            "ElevenLabs synthesis completed",
            call_id=call_id,
            request_id=request_id,
            latency_ms=round(latency_ms, 2),
            output_bytes=len(audio),
        )
        return audio

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        defaults = self._provider_defaults
        keys = (
            "api_key",
            "base_url",
            "voice_id",
            "model_id",
            "output_format",
            "stability",
            "similarity_boost",
            "min_audio_bytes",
        )
        merged = {
            key: runtime_options.get(key, self._pipeline_defaults.get(key, getattr(defaults, key)))
            for key in keys
        }
        merged["timeout_sec"] = float(
            runtime_options.get("timeout_sec", self._pipeline_defaults.get("timeout_sec", defaults.response_timeout_sec))
        )
        return merged
