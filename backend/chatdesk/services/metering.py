"""
Usage accumulator: charges tokens to a project after a successful LLM reply.

charge() does exactly one store round trip, the atomic increment, then
evaluates the threshold policy on the returned totals:

  usage >= 100%               → monthly_limit, at most once per 24h
  else usage >= warning pct   → usage_warning, at most once per 12h

The dedup read + insert runs on the dispatcher, so a slow or failing
notification log never blocks or fails the charge.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass

from chatdesk.core.config import Settings
from chatdesk.core.errors import InvalidRequest
from chatdesk.models.notification import NotificationType
from chatdesk.services.notifications import NotificationDispatcher, NotificationLog
from chatdesk.services.project_store import ProjectStore
from chatdesk.services.records import UsageTotals, utcnow
from chatdesk.services.subscription import usage_percent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ChargeResult:
    new_total: int
    monthly_token_limit: int
    usage_percent: float


@dataclass(frozen=True, slots=True)
class ThresholdNotice:
    """A notification the threshold policy wants to emit."""

    type: str
    window_hours: int
    message: str


def threshold_notice(
    totals: UsageTotals,
    percent: float,
    settings: Settings,
) -> ThresholdNotice | None:
    """Pure threshold policy; None when usage is below every threshold."""
    if percent >= 100:
        return ThresholdNotice(
            type=NotificationType.MONTHLY_LIMIT,
            window_hours=settings.MONTHLY_LIMIT_WINDOW_HOURS,
            message=f"Monthly token limit reached for project: {totals.name}",
        )
    if percent >= settings.USAGE_WARNING_PERCENT:
        return ThresholdNotice(
            type=NotificationType.USAGE_WARNING,
            window_hours=settings.USAGE_WARNING_WINDOW_HOURS,
            message=f"Token usage warning ({percent:.1f}%) for project: {totals.name}",
        )
    return None


class UsageMeter:
    """Applies token deltas and fires threshold notifications."""

    def __init__(
        self,
        store: ProjectStore,
        notifications: NotificationLog,
        dispatcher: NotificationDispatcher,
        settings: Settings,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._dispatcher = dispatcher
        self._settings = settings

    async def charge(
        self,
        project_id: str,
        tokens: int,
        *,
        now: datetime.datetime | None = None,
    ) -> ChargeResult:
        """
        Atomically add `tokens` to the project's usage.

        Raises:
            InvalidRequest:    tokens is negative.
            ProjectNotFound:   no such project.
            StoreUnavailable:  the increment could not be applied.
        """
        if tokens < 0:
            raise InvalidRequest("tokens must be >= 0")

        now = now or utcnow()
        totals = await self._store.atomic_increment_usage(project_id, tokens, now)
        percent = usage_percent(totals.total_tokens_used, totals.monthly_token_limit)

        notice = threshold_notice(totals, percent, self._settings)
        if notice is not None:
            self._dispatcher.dispatch(
                f"{notice.type}:{project_id}",
                lambda: self._notifications.record_unless_recent(
                    totals.project_pk,
                    notice.type,
                    notice.message,
                    notice.window_hours,
                    now=now,
                ),
            )
            if notice.type == NotificationType.MONTHLY_LIMIT:
                logger.warning(
                    "Project %s reached its monthly limit: %d/%d tokens",
                    project_id, totals.total_tokens_used, totals.monthly_token_limit,
                )

        return ChargeResult(
            new_total=totals.total_tokens_used,
            monthly_token_limit=totals.monthly_token_limit,
            usage_percent=percent,
        )
