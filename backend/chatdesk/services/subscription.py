"""
Subscription evaluation: the pure decision functions of the metering core.

Nothing here touches the database, the clock, or the network. Every
function takes the project snapshot and "now" explicitly, so the rules
are trivially testable and the callers own all side effects.

Decision order in evaluate():
  1. stored status != active  → Blocked(status reason)
  2. now >= expiry_date       → Blocked(expired), persist_expiry=True
  3. usage >= monthly limit   → Blocked(limit_exceeded)
  4. otherwise                → Allowed

Step 2 is the lazy-expiry check: the stored status may still say
"active" until the maintenance sweep runs, so the caller is told to
persist "expired" in the background.
"""

from __future__ import annotations

import datetime
import enum
from dataclasses import dataclass

from dateutil.relativedelta import relativedelta

from chatdesk.core.errors import InvalidRequest
from chatdesk.models.project import ProjectStatus
from chatdesk.services.records import ProjectRecord

MAX_RENEWAL_MONTHS = 12


class BlockReason(str, enum.Enum):
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    DELETED = "deleted"
    INACTIVE = "inactive"
    LIMIT_EXCEEDED = "limit_exceeded"


BLOCK_MESSAGES: dict[BlockReason, str] = {
    BlockReason.EXPIRED: "Your subscription has expired. Please renew to continue.",
    BlockReason.SUSPENDED: "Your account is suspended. Please contact support.",
    BlockReason.DELETED: "This project has been deleted.",
    BlockReason.INACTIVE: "Your account is inactive. Please contact support.",
    BlockReason.LIMIT_EXCEEDED: (
        "Monthly usage limit reached. Please upgrade your plan or contact support."
    ),
}

_STATUS_REASONS = {
    ProjectStatus.EXPIRED: BlockReason.EXPIRED,
    ProjectStatus.SUSPENDED: BlockReason.SUSPENDED,
    ProjectStatus.DELETED: BlockReason.DELETED,
}


@dataclass(frozen=True, slots=True)
class Allowed:
    allowed: bool = True


@dataclass(frozen=True, slots=True)
class Blocked:
    """A chat may not proceed.

    Attributes:
        reason:          Machine-readable reason, surfaced to the widget as status.
        persist_expiry:  True when the stored status is stale and the caller
                         should write status=expired in the background.
    """

    reason: BlockReason
    persist_expiry: bool = False
    allowed: bool = False

    @property
    def message(self) -> str:
        return BLOCK_MESSAGES[self.reason]


Decision = Allowed | Blocked


def evaluate(project: ProjectRecord, now: datetime.datetime) -> Decision:
    """Decide whether a chat request for this project may proceed."""
    if project.status != ProjectStatus.ACTIVE:
        return Blocked(_STATUS_REASONS.get(project.status, BlockReason.INACTIVE))

    if now >= project.expiry_date:
        return Blocked(BlockReason.EXPIRED, persist_expiry=True)

    if project.total_tokens_used >= project.monthly_token_limit:
        return Blocked(BlockReason.LIMIT_EXCEEDED)

    return Allowed()


# ── Usage arithmetic ────────────────────────────────────────
def usage_percent(tokens_used: int, token_limit: int) -> float:
    if token_limit <= 0:
        return 0.0
    return tokens_used * 100 / token_limit


def remaining_tokens(tokens_used: int, token_limit: int) -> int:
    return max(token_limit - tokens_used, 0)


def days_until_expiry(project: ProjectRecord, now: datetime.datetime) -> float:
    """Fractional days left; negative once expired."""
    return (project.expiry_date - now).total_seconds() / 86_400


def is_expired(project: ProjectRecord, now: datetime.datetime) -> bool:
    return project.status == ProjectStatus.EXPIRED or now >= project.expiry_date


def effective_status(project: ProjectRecord, now: datetime.datetime) -> str:
    """Stored status corrected for an expiry the sweep has not caught yet."""
    if project.status in (ProjectStatus.ACTIVE, ProjectStatus.SUSPENDED) and now >= project.expiry_date:
        return ProjectStatus.EXPIRED
    return project.status


def usage_warnings(percent: float, days_left: float) -> list[str]:
    """Human-readable warnings for the admin usage report."""
    warnings: list[str] = []

    if percent >= 100:
        warnings.append("Monthly token limit exceeded")
    elif percent >= 90:
        warnings.append("Approaching monthly token limit (90%+)")
    elif percent >= 80:
        warnings.append("High token usage (80%+)")

    if days_left <= 0:
        warnings.append("Subscription has expired")
    elif days_left <= 3:
        warnings.append("Subscription expires soon (3 days or less)")
    elif days_left <= 7:
        warnings.append("Subscription expires within a week")

    return warnings


# ── Renewal ─────────────────────────────────────────────────
def add_months(value: datetime.datetime, months: int) -> datetime.datetime:
    """Calendar-month addition; day-of-month clamps to the target month's end."""
    return value + relativedelta(months=months)


def renewal_expiry(
    project: ProjectRecord,
    months: int,
    now: datetime.datetime,
    *,
    extend_from_now: bool = False,
) -> datetime.datetime:
    """
    New expiry date for a renewal of `months`.

    Expired projects (by date or by status) renew from now, so a stale past
    expiry is never extended. Live projects extend from their current
    expiry, so renewing early does not lose paid time.
    """
    if not 1 <= months <= MAX_RENEWAL_MONTHS:
        raise InvalidRequest(f"Months must be between 1 and {MAX_RENEWAL_MONTHS}")

    if extend_from_now or is_expired(project, now):
        return add_months(now, months)
    return add_months(project.expiry_date, months)


def needs_expiry_reminder(
    project: ProjectRecord,
    now: datetime.datetime,
    reminder_days: int,
) -> bool:
    """True inside the reminder window before expiry, once per renewal."""
    if project.reminder_sent or project.status != ProjectStatus.ACTIVE:
        return False
    window_start = project.expiry_date - datetime.timedelta(days=reminder_days)
    return window_start <= now < project.expiry_date
