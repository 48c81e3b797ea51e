"""
Pydantic v2 schemas for the admin project + subscription endpoints.
"""

from __future__ import annotations

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from chatdesk.services.notifications import NotificationOut
from chatdesk.services.project_store import StatusBreakdown


# ── Projects ────────────────────────────────────────────────
class ProjectCreate(BaseModel):
    """
    Admin payload for a new project. Quota and subscription length fall
    back to DEFAULT_MONTHLY_TOKEN_LIMIT / DEFAULT_SUBSCRIPTION_MONTHS.
    """

    model_config = ConfigDict(extra="forbid")

    project_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r"^[A-Za-z0-9_-]+$",
        examples=["acme-support"],
    )
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=2000)
    client_id: str | None = Field(default=None, max_length=64)
    ai_model: str | None = Field(default=None, max_length=100, examples=["gpt-4o"])
    knowledge_text: str = Field(
        default="",
        description="Extracted document text used as chat context.",
    )
    monthly_token_limit: int | None = Field(default=None, gt=0)
    months: int | None = Field(default=None, ge=1, le=12)


class ProjectUpdate(BaseModel):
    """
    In-place edit. Omitted, null and empty-string fields are left as they
    are; subscription dates, status and usage are not editable here.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    knowledge_text: str | None = None
    ai_model: str | None = Field(default=None, max_length=100)
    monthly_token_limit: int | None = Field(default=None, gt=0)

    def changes(self) -> dict:
        return {k: v for k, v in self.model_dump().items() if v not in (None, "")}


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    project_id: str
    name: str
    description: str
    client_id: str | None
    status: str
    start_date: datetime.datetime
    expiry_date: datetime.datetime
    total_tokens_used: int
    monthly_token_limit: int
    ai_model: str | None
    created_at: datetime.datetime


# ── Subscription actions ────────────────────────────────────
class RenewRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    months: int = Field(default=1, ge=1, le=12)
    reset_tokens: bool = True
    new_token_limit: int | None = Field(
        default=None,
        description="New monthly quota; ignored unless > 0.",
    )
    extend_from_now: bool = False


class RenewResponse(BaseModel):
    message: str
    new_expiry: datetime.datetime
    status: str
    tokens_reset: bool
    new_limit: int


class SuspendRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(default="", max_length=500)


class LimitUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    new_limit: int = Field(..., gt=0)


class StatusChangeOut(BaseModel):
    message: str
    status: str
    expiry_date: datetime.datetime


# ── Reports ─────────────────────────────────────────────────
class SubscriptionStatusOut(BaseModel):
    project_id: str
    status: str
    start_date: datetime.datetime
    expiry_date: datetime.datetime
    total_tokens_used: int
    monthly_token_limit: int
    remaining_tokens: int
    usage_percentage: float
    days_until_expiry: float
    is_active: bool
    needs_renewal: bool


class UsageReportOut(BaseModel):
    project_id: str
    status: str
    tokens_used: int
    token_limit: int
    remaining_tokens: int
    usage_percentage: float
    days_until_expiry: float
    daily_average: int
    estimated_cost_usd: Decimal | None
    warnings: list[str]


class SubscriptionStatsOut(BaseModel):
    by_status: list[StatusBreakdown]
    expiring_soon: int
    high_usage_count: int
    timestamp: datetime.datetime


class NotificationListOut(BaseModel):
    project_id: str
    count: int
    notifications: list[NotificationOut]
