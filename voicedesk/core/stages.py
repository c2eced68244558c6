"""
Dialogue stage machine.

A call walks a linear list of stages, each described by a StageSpec:
prompt the caller, normalize and validate the answer, store it, produce a
reply and optionally run a side effect. Invalid answers re-prompt without
changing stage. After the last stage the session is DONE, where only a
goodbye gets a (single) farewell and anything else is ignored.

Two flows are built from configuration:
    identify_reason: IDENTIFY -> REASON -> DONE
    reason_only:     REASON -> DONE
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Set

from ..config import DialogueConfig, TimeoutsConfig
from ..logging_config import get_logger
from ..pipelines.base import AdapterError, ResponderComponent
from .models import CallSession, Classification, Stage, TicketRecord
from .normalization import display_token, is_goodbye, is_vague_reason, normalize_name

logger = get_logger(__name__)


@dataclass
class StageOutcome:
    """What the turn executor should speak (None means stay silent)."""
    reply: Optional[str]
    accepted: bool = False


@dataclass
class StageSpec:
    stage: Stage
    prompt: str
    reprompt: str
    normalizer: Callable[[str], str]
    validator: Callable[[str], bool]
    store: Callable[[CallSession, str], None]
    respond: Callable[[CallSession, str], Awaitable[str]]
    side_effect: Optional[Callable[[CallSession], Awaitable[None]]] = None


def _collapse(text: str) -> str:
    return " ".join((text or "").split())


class DialogueFlow:
    def __init__(
        self,
        config: DialogueConfig,
        responder: ResponderComponent,
        ticket_sink,
        timeouts: Optional[TimeoutsConfig] = None,
    ):
        self._config = config
        self._responder = responder
        self._ticket_sink = ticket_sink
        self._timeouts = timeouts or TimeoutsConfig()
        self._pending: Set[asyncio.Task] = set()
        self.stages: List[StageSpec] = self._build_stages(config.flow)
        self._by_stage: Dict[Stage, int] = {step.stage: idx for idx, step in enumerate(self.stages)}

    # Construction ---------------------------------------------------------------

    def _build_stages(self, flow: str) -> List[StageSpec]:
        reason = StageSpec(
            stage=Stage.REASON,
            prompt=self._config.reason_prompt,
            reprompt=self._config.reason_reprompt,
            normalizer=_collapse,
            validator=lambda text: not is_vague_reason(text),
            store=self._store_reason,
            respond=self._respond_reason,
            side_effect=self._submit_ticket_once,
        )
        if flow == "reason_only":
            return [reason]
        identify = StageSpec(
            stage=Stage.IDENTIFY,
            prompt=self._config.identify_prompt,
            reprompt=self._config.identify_reprompt,
            normalizer=normalize_name,
            validator=bool,
            store=self._store_identity,
            respond=self._respond_identity,
        )
        return [identify, reason]

    @property
    def initial_stage(self) -> Stage:
        return self.stages[0].stage

    def prepare(self, session: CallSession) -> None:
        """Place a fresh session on the flow's first stage."""
        session.advance_stage(self.initial_stage)

    def greeting_text(self) -> str:
        return f"{self._config.greeting} {self.stages[0].prompt}".strip()

    def next_prompt(self, stage: Stage) -> Optional[str]:
        idx = self._by_stage.get(stage)
        if idx is None or idx + 1 >= len(self.stages):
            return None
        return self.stages[idx + 1].prompt

    def _next_stage(self, stage: Stage) -> Stage:
        idx = self._by_stage[stage]
        if idx + 1 < len(self.stages):
            return self.stages[idx + 1].stage
        return Stage.DONE

    # Turn handling --------------------------------------------------------------

    async def handle(self, session: CallSession, text: str) -> StageOutcome:
        if session.stage == Stage.DONE:
            return self._handle_done(session, text)

        step = self.stages[self._by_stage[session.stage]]
        value = step.normalizer(text)
        if not step.validator(value):
            logger.info(
                "Stage input rejected; re-prompting",
                call_id=session.session_id,
                stage=step.stage.value,
                preview=(text or "")[:40],
            )
            return StageOutcome(reply=step.reprompt)

        reply = await step.respond(session, value)
        # Nothing is stored when the reply fails, so a retry starts clean
        step.store(session, value)
        if step.side_effect is not None:
            await step.side_effect(session)
        target = self._next_stage(step.stage)
        if session.stage != target:
            session.advance_stage(target)
        logger.info(
            "Stage completed",
            call_id=session.session_id,
            stage=step.stage.value,
            next_stage=session.stage.value,
        )
        return StageOutcome(reply=reply, accepted=True)

    def _handle_done(self, session: CallSession, text: str) -> StageOutcome:
        if is_goodbye(text) and not session.farewell_spoken:
            session.farewell_spoken = True
            logger.info("Caller said goodbye", call_id=session.session_id)
            return StageOutcome(reply=self._config.farewell, accepted=True)
        logger.debug("Ignoring input after dialogue completed", call_id=session.session_id)
        return StageOutcome(reply=None)

    # IDENTIFY -------------------------------------------------------------------

    def _store_identity(self, session: CallSession, value: str) -> None:
        session.caller_identity = value
        session.caller_display_name = display_token(value)

    async def _respond_identity(self, session: CallSession, value: str) -> str:
        name = display_token(value) or value
        ack = self._config.identify_ack.format(name=name)
        next_prompt = self.next_prompt(Stage.IDENTIFY) or ""
        return f"{ack} {next_prompt}".strip()

    # REASON ---------------------------------------------------------------------

    def _store_reason(self, session: CallSession, value: str) -> None:
        session.captured_reason = value

    def _context(self, session: CallSession) -> Dict[str, object]:
        return {
            "caller_name": session.caller_display_name,
            "caller_identity": session.caller_identity,
            "stage": session.stage.value,
        }

    async def _respond_reason(self, session: CallSession, value: str) -> str:
        reply = await asyncio.wait_for(
            self._responder.generate(session.session_id, value, self._context(session), {}),
            timeout=self._timeouts.responder_sec,
        )
        text = (reply.text or "").strip()
        if not text:
            logger.info("Responder returned empty closing reply; using fallback", call_id=session.session_id)
            return self._config.closing_fallback
        return text

    async def classify(self, session: CallSession) -> Classification:
        """One-shot classification; any failure yields the default category/urgency."""
        try:
            return await asyncio.wait_for(
                self._responder.classify(session.session_id, session.captured_reason or "", self._context(session), {}),
                timeout=self._timeouts.classifier_sec,
            )
        except (AdapterError, asyncio.TimeoutError) as exc:
            logger.warning(
                "Classification failed; using defaults",
                call_id=session.session_id,
                error=str(exc) or type(exc).__name__,
            )
            return Classification(
                category=self._config.default_category,
                urgency=self._config.default_urgency,
            )

    async def _submit_ticket_once(self, session: CallSession) -> None:
        if session.ticket_submitted:
            return
        classification = await self.classify(session)
        if session.ticket_submitted:
            return
        session.ticket_submitted = True
        session.advance_stage(Stage.DONE)
        record = TicketRecord(
            name=session.caller_identity,
            phone=session.caller_phone,
            category=classification.category,
            urgency=classification.urgency,
            reason_text=session.captured_reason or "",
        )
        # Delivery runs on its own task so a barge-in cannot abort the POST
        task = asyncio.create_task(self._ticket_sink.submit(session.session_id, record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for outstanding ticket deliveries."""
        if not self._pending:
            return
        results = await asyncio.gather(*list(self._pending), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Ticket delivery task failed", error=str(result) or type(result).__name__)
