import datetime
import uuid

import pytest

from chatdesk.core.errors import InvalidRequest
from chatdesk.models.project import ProjectStatus
from chatdesk.services.records import ProjectRecord
from chatdesk.services.subscription import (
    BLOCK_MESSAGES,
    Allowed,
    Blocked,
    BlockReason,
    add_months,
    effective_status,
    evaluate,
    needs_expiry_reminder,
    remaining_tokens,
    renewal_expiry,
    usage_percent,
    usage_warnings,
)

NOW = datetime.datetime(2026, 10, 17, 12, 0, tzinfo=datetime.timezone.utc)


def make_record(**overrides) -> ProjectRecord:
    fields = dict(
        id=uuid.uuid4(),
        project_id="acme",
        name="Acme bot",
        description="",
        client_id=None,
        status=ProjectStatus.ACTIVE,
        start_date=NOW - datetime.timedelta(days=10),
        expiry_date=NOW + datetime.timedelta(days=20),
        total_tokens_used=0,
        monthly_token_limit=1000,
        ai_model=None,
        knowledge_text="",
        reminder_sent=False,
        created_at=NOW - datetime.timedelta(days=10),
        updated_at=NOW - datetime.timedelta(days=10),
    )
    fields.update(overrides)
    return ProjectRecord(**fields)


# ── evaluate ────────────────────────────────────────────────
def test_active_project_under_quota_is_allowed():
    assert isinstance(evaluate(make_record(total_tokens_used=999), NOW), Allowed)


def test_usage_at_limit_is_blocked():
    decision = evaluate(make_record(total_tokens_used=1000), NOW)
    assert isinstance(decision, Blocked)
    assert decision.reason is BlockReason.LIMIT_EXCEEDED
    assert decision.message == BLOCK_MESSAGES[BlockReason.LIMIT_EXCEEDED]
    assert decision.persist_expiry is False


def test_stale_active_status_past_expiry_asks_to_persist():
    decision = evaluate(make_record(expiry_date=NOW - datetime.timedelta(seconds=1)), NOW)
    assert decision == Blocked(BlockReason.EXPIRED, persist_expiry=True)


def test_expiry_boundary_is_inclusive():
    decision = evaluate(make_record(expiry_date=NOW), NOW)
    assert isinstance(decision, Blocked)
    assert decision.reason is BlockReason.EXPIRED


@pytest.mark.parametrize(
    "status, reason",
    [
        (ProjectStatus.SUSPENDED, BlockReason.SUSPENDED),
        (ProjectStatus.EXPIRED, BlockReason.EXPIRED),
        (ProjectStatus.DELETED, BlockReason.DELETED),
        ("archived", BlockReason.INACTIVE),
    ],
)
def test_stored_status_wins_over_expiry_and_quota(status, reason):
    project = make_record(
        status=status,
        expiry_date=NOW - datetime.timedelta(days=1),
        total_tokens_used=5000,
    )
    decision = evaluate(project, NOW)
    assert decision.reason is reason
    assert decision.persist_expiry is False


def test_expired_reason_message():
    decision = evaluate(make_record(status=ProjectStatus.EXPIRED), NOW)
    assert decision.message == "Your subscription has expired. Please renew to continue."


# ── usage arithmetic ────────────────────────────────────────
def test_usage_helpers():
    assert usage_percent(950, 1000) == 95.0
    assert usage_percent(10, 0) == 0.0
    assert remaining_tokens(1050, 1000) == 0
    assert remaining_tokens(200, 1000) == 800


def test_effective_status_corrects_stale_active():
    stale = make_record(expiry_date=NOW - datetime.timedelta(hours=1))
    assert effective_status(stale, NOW) == ProjectStatus.EXPIRED
    assert effective_status(make_record(), NOW) == ProjectStatus.ACTIVE
    deleted = make_record(status=ProjectStatus.DELETED, expiry_date=NOW - datetime.timedelta(days=1))
    assert effective_status(deleted, NOW) == ProjectStatus.DELETED


def test_usage_warnings():
    assert usage_warnings(100.0, 10) == ["Monthly token limit exceeded"]
    assert usage_warnings(85.0, 2) == [
        "High token usage (80%+)",
        "Subscription expires soon (3 days or less)",
    ]
    assert usage_warnings(10.0, -1) == ["Subscription has expired"]


# ── renewal ─────────────────────────────────────────────────
def test_renewal_of_expired_project_starts_from_now():
    project = make_record(
        status=ProjectStatus.EXPIRED,
        expiry_date=NOW - datetime.timedelta(days=5),
    )
    assert renewal_expiry(project, 1, NOW) == add_months(NOW, 1)


def test_renewal_of_stale_active_project_starts_from_now():
    project = make_record(expiry_date=NOW - datetime.timedelta(days=5))
    assert renewal_expiry(project, 2, NOW) == add_months(NOW, 2)


def test_renewal_of_live_project_extends_current_expiry():
    expiry = NOW + datetime.timedelta(days=10)
    project = make_record(expiry_date=expiry)
    assert renewal_expiry(project, 1, NOW) == datetime.datetime(2026, 11, 27, 12, 0, tzinfo=datetime.timezone.utc)
    assert renewal_expiry(project, 1, NOW, extend_from_now=True) == add_months(NOW, 1)


@pytest.mark.parametrize("months", [0, 13, -1])
def test_renewal_rejects_out_of_range_months(months):
    with pytest.raises(InvalidRequest):
        renewal_expiry(make_record(), months, NOW)


def test_add_months_clamps_to_month_end():
    jan_31 = datetime.datetime(2026, 1, 31, tzinfo=datetime.timezone.utc)
    assert add_months(jan_31, 1) == datetime.datetime(2026, 2, 28, tzinfo=datetime.timezone.utc)


# ── reminders ───────────────────────────────────────────────
def test_expiry_reminder_window():
    inside = make_record(expiry_date=NOW + datetime.timedelta(days=2))
    outside = make_record(expiry_date=NOW + datetime.timedelta(days=5))
    already = make_record(expiry_date=NOW + datetime.timedelta(days=2), reminder_sent=True)

    assert needs_expiry_reminder(inside, NOW, 3) is True
    assert needs_expiry_reminder(outside, NOW, 3) is False
    assert needs_expiry_reminder(already, NOW, 3) is False
