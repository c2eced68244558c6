"""
OpenAI Chat Completions responder adapter.

Generates the caller-facing closing reply and performs the one-shot
category/urgency classification of the caller's reason. Any
OpenAI-compatible endpoint works via ``chat_base_url``.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from ..config import AppConfig, OpenAIProviderConfig
from ..core.models import Classification
from ..logging_config import get_logger
from .base import ResponderComponent, ResponderError, ResponderReply
from .structured import parse_classification, split_structured_tail

logger = get_logger(__name__)


def _make_http_headers(options: Dict[str, Any]) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {options['api_key']}",
        "Content-Type": "application/json",
        "User-Agent": "voicedesk/1.0",
    }
    if options.get("organization"):
        headers["OpenAI-Organization"] = options["organization"]
    return headers


class OpenAIResponderAdapter(ResponderComponent):
    """OpenAI responder supporting reply generation and classification."""

    def __init__(
        self,
        component_key: str,
        app_config: AppConfig,
        provider_config: OpenAIProviderConfig,
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
        self._default_timeout = float(self._pipeline_defaults.get("response_timeout_sec", provider_config.response_timeout_sec))

    async def start(self) -> None:
        logger.debug(
            "OpenAI responder adapter initialized",
            component=self.component_key,
            default_model=self._provider_defaults.chat_model,
        )

    async def stop(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def generate(
        self,
        call_id: str,
        utterance: str,
        context: Dict[str, Any],
        options: Dict[str, Any],
    ) -> ResponderReply:
        merged = self._compose_options(options)
        system_prompt = context.get("system_prompt") or self._app_config.dialogue.responder_prompt
        messages = self._build_messages(system_prompt, utterance, context)
        content, usage = await self._chat(call_id, messages, merged, purpose="reply")
        text, payload = split_structured_tail(content)
        return ResponderReply(text=text, payload=payload, metadata=usage)

    async def classify(
        self,
        call_id: str,
        reason: str,
        context: Dict[str, Any],
        options: Dict[str, Any],
    ) -> Classification:
        dialogue = self._app_config.dialogue
        categories = list(context.get("categories") or dialogue.categories)
        urgencies = list(context.get("urgencies") or dialogue.urgencies)
        system_prompt = dialogue.classifier_prompt.format(
            categories=", ".join(categories),
            urgencies=", ".join(urgencies),
        )
        merged = self._compose_options(options)
        # Deterministic output for the vocabulary mapping
        merged["temperature"] = 0.0
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": reason},
        ]
        content, _usage = await self._chat(call_id, messages, merged, purpose="classify")
        classification = parse_classification(
            content,
            categories=categories,
            urgencies=urgencies,
            default_category=dialogue.default_category,
            default_urgency=dialogue.default_urgency,
        )
        logger.info(
            "OpenAI classification received",
            call_id=call_id,
            category=classification.category,
            urgency=classification.urgency,
        )
        return classification

    async def _chat(
        self,
        call_id: str,
        messages: List[Dict[str, str]],
        merged: Dict[str, Any],
        *,
        purpose: str,
    ) -> tuple[str, Dict[str, Any]]:
        if not merged["api_key"]:
            raise ResponderError("OpenAI responder requires an API key", component=self.component_key)

        await self._ensure_session()
        assert self._session

        payload: Dict[str, Any] = {"model": merged["chat_model"], "messages": messages}
        if merged.get("temperature") is not None:
            payload["temperature"] = merged["temperature"]
        if merged.get("max_tokens") is not None:
            payload["max_tokens"] = merged["max_tokens"]

        headers = _make_http_headers(merged)
        url = merged["chat_base_url"].rstrip("/") + "/chat/completions"
        request_id = f"oai-chat-{uuid.uuid4().hex[:12]}"

        logger.debug(
            "OpenAI chat completion request",
            call_id=call_id,
            request_id=request_id,
            purpose=purpose,
            model=payload.get("model"),
            temperature=payload.get("temperature"),
        )

        started_at = time.perf_counter()
        timeout = aiohttp.ClientTimeout(total=merged["timeout_sec"])
        try:
            async with self._session.post(url, json=payload, headers=headers, timeout=timeout) as response:
                body = await response.text()
                if response.status >= 400:
                    logger.error(
                        "OpenAI chat completion failed",
                        call_id=call_id,
                        request_id=request_id,
                        status=response.status,
                        body_preview=body[:128],
                    )
                    raise ResponderError(
                        f"OpenAI chat completion failed with status {response.status}",
                        component=self.component_key,
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("OpenAI responder connection error", call_id=call_id, request_id=request_id, error=str(exc))
            raise ResponderError(f"OpenAI chat completion request failed: {exc}", component=self.component_key) from exc

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ResponderError("OpenAI chat completion returned invalid JSON", component=self.component_key) from exc

        choices = data.get("choices") or []
        if not choices:
            logger.warning("OpenAI chat completion returned no choices", call_id=call_id, request_id=request_id)
            return "", data.get("usage", {})

        message = choices[0].get("message") or {}
        content = message.get("content") or ""
        latency_ms = (time.perf_counter() - started_at) * 1000.0
        logger.info(
            "OpenAI chat completion received",
            call_id=call_id,
            request_id=request_id,
            purpose=purpose,
            model=payload.get("model"),
            latency_ms=round(latency_ms, 2),
            preview=content[:80],
        )
        return content, data.get("usage", {})

    async def _ensure_session(self) -> None:
        if self._session and not self._session.closed:
            return
        factory = self._session_factory or aiohttp.ClientSession
        self._session = factory()

    def _compose_options(self, runtime_options: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        runtime_options = runtime_options or {}
        defaults = self._provider_defaults

        def pick(key: str, default: Any) -> Any:
            return runtime_options.get(key, self._pipeline_defaults.get(key, default))

        merged = {
            key: pick(key, getattr(defaults, key))
            for key in ("api_key", "organization", "chat_base_url", "chat_model", "temperature", "max_tokens")
        }
        merged["timeout_sec"] = float(pick("timeout_sec", self._default_timeout))
        return merged

    @staticmethod
    def _build_messages(system_prompt: Optional[str], utterance: str, context: Dict[str, Any]) -> List[Dict[str, str]]:
        conversation: List[Dict[str, str]] = []
        if system_prompt:
            conversation.append({"role": "system", "content": system_prompt})
        caller = context.get("caller_name")
        if caller:
            conversation.append({"role": "system", "content": f"Nombre de la persona que llama: {caller}"})
        conversation.extend(context.get("prior_messages") or [])
        if utterance:
            conversation.append({"role": "user", "content": utterance})
        return conversation
