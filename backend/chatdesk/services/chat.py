"""
Chat service: the single inbound call site of the metering core.

handle_message() runs, strictly in this order:
  1. read the project and evaluate the subscription (no LLM cost yet);
  2. call the LLM with the project's knowledge text as context;
  3. charge the reported tokens with one atomic increment;
  4. append the exchange to the chat log.

Blocked requests return the evaluator's reason and message verbatim.
LLM failures return an apologetic message and charge nothing.
No lock is held across the LLM call: two concurrent requests can both
pass step 1 and overshoot the quota by their combined cost.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from chatdesk.core.errors import ProjectNotFound, StoreUnavailable
from chatdesk.services.chat_log import ChatLog
from chatdesk.services.llm_client import USER_MESSAGES, LLMClient, LLMError
from chatdesk.services.maintenance import expire_lazily
from chatdesk.services.metering import UsageMeter
from chatdesk.services.notifications import NotificationDispatcher, NotificationLog
from chatdesk.services.project_store import ProjectStore
from chatdesk.services.records import utcnow
from chatdesk.services.subscription import Blocked, BlockReason, evaluate, usage_percent

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass(frozen=True, slots=True)
class UsageSnapshot:
    total_tokens: int
    limit: int
    usage_percent: float


@dataclass(frozen=True, slots=True)
class ChatOutcome:
    """What the widget gets back.

    status is "success", "error" (LLM failure), or a BlockReason value.
    """

    status: str
    response: str
    tokens_used: int = 0
    usage: UsageSnapshot | None = None
    message_id: str | None = None
    error: str | None = None

    @property
    def blocked(self) -> bool:
        return self.status not in (STATUS_SUCCESS, STATUS_ERROR)


class ChatService:
    def __init__(
        self,
        store: ProjectStore,
        meter: UsageMeter,
        llm: LLMClient,
        chat_log: ChatLog,
        notifications: NotificationLog,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._store = store
        self._meter = meter
        self._llm = llm
        self._chat_log = chat_log
        self._notifications = notifications
        self._dispatcher = dispatcher

    async def handle_message(
        self,
        project_id: str,
        message: str,
        *,
        session_id: str = "",
        user_id: str | None = None,
    ) -> ChatOutcome:
        """
        Raises:
            ProjectNotFound:   unknown project id.
            StoreUnavailable:  the subscription read failed (retryable;
                               nothing was charged).
        """
        now = utcnow()

        # ── 1. Subscription check ───────────────────────────
        project = await self._store.find_by_external_id(project_id)
        if project is None:
            raise ProjectNotFound(project_id)

        decision = evaluate(project, now)
        if isinstance(decision, Blocked):
            if decision.persist_expiry:
                self._dispatcher.dispatch(
                    f"lazy_expiry:{project_id}",
                    lambda: expire_lazily(self._store, self._notifications, project, now),
                )
            logger.warning("Chat blocked for project %s: %s", project_id, decision.reason.value)

            usage = None
            if decision.reason is BlockReason.LIMIT_EXCEEDED:
                usage = UsageSnapshot(
                    total_tokens=project.total_tokens_used,
                    limit=project.monthly_token_limit,
                    usage_percent=usage_percent(project.total_tokens_used, project.monthly_token_limit),
                )
            return ChatOutcome(status=decision.reason.value, response=decision.message, usage=usage)

        # ── 2. LLM call ─────────────────────────────────────
        model = project.ai_model or self._llm.default_model
        started = time.monotonic()
        try:
            completion = await self._llm.complete(message, project.knowledge_text, model)
        except LLMError as exc:
            logger.warning("LLM call failed for project %s: %s", project_id, exc.kind)
            return ChatOutcome(status=STATUS_ERROR, response=USER_MESSAGES[exc.kind], error=exc.kind)
        elapsed_ms = int((time.monotonic() - started) * 1000)

        # ── 3. Charge (only after a delivered reply) ────────
        usage = None
        try:
            charge = await self._meter.charge(project_id, completion.tokens_used)
            usage = UsageSnapshot(
                total_tokens=charge.new_total,
                limit=charge.monthly_token_limit,
                usage_percent=charge.usage_percent,
            )
        except (StoreUnavailable, ProjectNotFound):
            logger.error(
                "Usage not recorded for project %s (%d tokens)",
                project_id, completion.tokens_used,
            )

        # ── 4. Chat log ─────────────────────────────────────
        message_id = None
        try:
            saved = await self._chat_log.save(
                project_id=project_id,
                session_id=session_id,
                user_id=user_id,
                message=message,
                response=completion.text,
                tokens_used=completion.tokens_used,
                model=completion.model,
                processing_time_ms=elapsed_ms,
                now=utcnow(),
            )
            message_id = str(saved)
        except StoreUnavailable:
            logger.error("Failed to save chat message for project %s", project_id)

        return ChatOutcome(
            status=STATUS_SUCCESS,
            response=completion.text,
            tokens_used=completion.tokens_used,
            usage=usage,
            message_id=message_id,
        )
