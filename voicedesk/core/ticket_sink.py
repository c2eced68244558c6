"""
Ticket sink: delivers one captured support ticket per call.

Delivery is at-most-once. The session's ticket guard is set before the POST
is attempted, and failures are logged without retry.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from typing import Callable, Optional

import aiohttp

from ..config import TicketSinkConfig
from ..logging_config import get_logger
from .models import TicketRecord

logger = get_logger(__name__)


class HttpTicketSink:
    """POSTs ``{name, phone, category, urgency, reasonText}`` as JSON."""

    def __init__(
        self,
        config: TicketSinkConfig,
        *,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ):
        self._config = config
        self._session_factory = session_factory
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if not self._config.url:
            logger.warning("Ticket sink URL not configured; tickets will only be logged")

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()

    async def submit(self, call_id: Optional[str], record: TicketRecord) -> bool:
        """Returns True when the sink answered 2xx."""
        payload = record.to_payload()
        request_id = f"ticket-{uuid.uuid4().hex[:12]}"

        if not self._config.url:
            logger.info(
                "Ticket captured (no sink configured)",
                call_id=call_id,
                request_id=request_id,
                category=record.category,
                urgency=record.urgency,
            )
            return False

        await self._ensure_session()
        assert self._session

        started_at = time.perf_counter()
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_sec)
        try:
            async with self._session.post(self._config.url, json=payload, timeout=timeout) as response:
                latency_ms = (time.perf_counter() - started_at) * 1000.0
                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    logger.error(
                        "Ticket sink rejected ticket",
                        call_id=call_id,
                        request_id=request_id,
                        status=response.status,
                        body_preview=body[:128],
                        latency_ms=round(latency_ms, 2),
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(
                "Ticket sink request failed",
                call_id=call_id,
                request_id=request_id,
                error=str(exc) or type(exc).__name__,
            )
            return False

        logger.info(
            "Ticket submitted",
            call_id=call_id,
            request_id=request_id,
            category=record.category,
            urgency=record.urgency,
            latency_ms=round(latency_ms, 2),
        )
        return True
