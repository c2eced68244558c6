"""
ffmpeg subprocess transcoder.

Converts synthesized audio (MP3 or any container ffmpeg can probe) into the
raw outbound format of the call leg, 8 kHz mono μ-law by default. The whole
input is written to stdin, stdin is closed, and stdout is collected until
the process exits.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Any, Dict, List, Optional

from ..config import AppConfig, PlaybackConfig, TranscoderConfig
from ..logging_config import get_logger
from .base import AdapterError, TranscoderComponent, TranscoderError

logger = get_logger(__name__)

# codec -> (ffmpeg muxer, ffmpeg audio codec)
_RAW_FORMATS = {
    "mulaw": ("mulaw", "pcm_mulaw"),
    "ulaw": ("mulaw", "pcm_mulaw"),
    "alaw": ("alaw", "pcm_alaw"),
    "pcm16": ("s16le", "pcm_s16le"),
    "slin16": ("s16le", "pcm_s16le"),
    "linear16": ("s16le", "pcm_s16le"),
}


class FFmpegTranscoderAdapter(TranscoderComponent):
    def __init__(
        self,
        component_key: str,
        app_config: AppConfig,
        transcoder_config: TranscoderConfig,
        playback_config: Optional[PlaybackConfig] = None,
        options: Optional[Dict[str, Any]] = None,
    ):
        self.component_key = component_key
        self._app_config = app_config
        self._config = transcoder_config
        self._playback = playback_config or app_config.playback
        self._pipeline_defaults = options or {}

    async def start(self) -> None:
        logger.debug(
            "ffmpeg transcoder adapter initialized",
            component=self.component_key,
            ffmpeg_path=self._config.ffmpeg_path,
            target_codec=self._playback.codec,
            target_sample_rate=self._playback.sample_rate_hz,
        )

    def build_command(self) -> List[str]:
        codec = (self._playback.codec or "mulaw").lower()
        if codec not in _RAW_FORMATS:
            raise AdapterError(f"Unsupported outbound codec for ffmpeg: {codec}", component=self.component_key)
        muxer, audio_codec = _RAW_FORMATS[codec]
        return [
            self._config.ffmpeg_path,
            "-hide_banner",
            "-loglevel", "error",
            "-i", "pipe:0",
            "-vn",
            "-acodec", audio_codec,
            "-ar", str(self._playback.sample_rate_hz),
            "-ac", str(self._playback.channels),
            "-f", muxer,
            "pipe:1",
        ]

    async def transcode(self, call_id: str, audio: bytes) -> bytes:
        if not audio:
            return b""

        command = self.build_command()
        request_id = f"ffmpeg-{uuid.uuid4().hex[:12]}"
        timeout = float(self._pipeline_defaults.get("timeout_sec", self._config.timeout_sec))
        started_at = time.perf_counter()

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            logger.error("ffmpeg executable not found", call_id=call_id, ffmpeg_path=self._config.ffmpeg_path)
            raise AdapterError(f"ffmpeg not found at {self._config.ffmpeg_path}", component=self.component_key) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(input=audio), timeout=timeout)
        except asyncio.TimeoutError as exc:
            process.kill()
            await process.wait()
            logger.error("ffmpeg transcode timed out", call_id=call_id, request_id=request_id, timeout_sec=timeout)
            raise AdapterError(f"ffmpeg transcode timed out after {timeout}s", component=self.component_key) from exc
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                # Reap it even if the caller is cancelled again meanwhile
                await asyncio.shield(process.wait())
            raise

        stderr_text = (stderr or b"").decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            logger.error(
                "ffmpeg transcode failed",
                call_id=call_id,
                request_id=request_id,
                returncode=process.returncode,
                stderr=stderr_text[:512],
            )
            raise TranscoderError(
                f"ffmpeg exited with status {process.returncode}",
                returncode=process.returncode,
                stderr=stderr_text,
                component=self.component_key,
            )

        latency_ms = (time.perf_counter() - started_at) * 1000.0
        logger.info(
            "ffmpeg transcode completed",
            call_id=call_id,
            request_id=request_id,
            input_bytes=len(audio),
            output_bytes=len(stdout),
            latency_ms=round(latency_ms, 2),
        )
        return stdout
