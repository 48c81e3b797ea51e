"""
Project model: one tenant's chatbot, and the billing/quota unit.

A project owns its subscription window (start_date → expiry_date), its
monthly token quota, and the running usage counter charged by every chat.

Design notes:
  • total_tokens_used / monthly_token_limit are BIGINT; usage is only ever
    changed through a single atomic UPDATE (see services.project_store).
  • status is the stored lifecycle state. It can lag reality between
    maintenance sweeps, so readers always re-check expiry_date.
  • Deleted projects are soft-deleted: status flips, the row stays.
  • Portable column types (Uuid, DateTime(timezone=True)) so the same
    models run on Postgres and on the SQLite test database.
"""

import datetime
import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from chatdesk.core.database import Base


class ProjectStatus:
    """Stored lifecycle states."""

    ACTIVE = "active"
    SUSPENDED = "suspended"
    EXPIRED = "expired"
    DELETED = "deleted"

    ALL = (ACTIVE, SUSPENDED, EXPIRED, DELETED)


class Project(Base):
    """One chatbot project with its subscription and usage counters."""

    __tablename__ = "projects"

    # ── Identity ────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    project_id: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # ── Subscription ────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectStatus.ACTIVE,
    )
    start_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    expiry_date: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )
    total_tokens_used: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0,
    )
    monthly_token_limit: Mapped[int] = mapped_column(
        BigInteger, nullable=False,
    )

    # ── Chat configuration ──────────────────────────────────
    ai_model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Extracted document text used as the LLM context.
    knowledge_text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # ── Expiry reminders ────────────────────────────────────
    reminder_sent: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    last_reminder_date: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    # ── Metadata ────────────────────────────────────────────
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("monthly_token_limit > 0", name="ck_monthly_token_limit_pos"),
        CheckConstraint("total_tokens_used >= 0", name="ck_total_tokens_used_non_neg"),
        CheckConstraint(
            "status IN ('active', 'suspended', 'expired', 'deleted')",
            name="ck_project_status_valid",
        ),
        Index("ix_projects_status_expiry", "status", "expiry_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Project project_id={self.project_id!r} status={self.status} "
            f"usage={self.total_tokens_used}/{self.monthly_token_limit}>"
        )
