"""
SQLAlchemy model for the `chat_messages` table.

Each row is one widget request/response pair with its token cost.
Rows are append-only; the only later mutation is the end-user rating.
"""

import datetime
import uuid

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from chatdesk.core.database import Base


class ChatMessage(Base):
    """One chat exchange, charged to a project."""

    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    # External project id, as the widget addresses it.
    project_id: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Exchange ────────────────────────────────────────────
    message: Mapped[str] = mapped_column(Text, nullable=False)
    response: Mapped[str] = mapped_column(Text, nullable=False)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # ── Feedback (the only mutable part) ────────────────────
    rating: Mapped[str | None] = mapped_column(String(10), nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    rated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
    )

    __table_args__ = (
        CheckConstraint("tokens_used >= 0", name="ck_chat_tokens_used_non_neg"),
        CheckConstraint(
            "rating IS NULL OR rating IN ('positive', 'negative')",
            name="ck_chat_rating_valid",
        ),
        Index("ix_chat_messages_project_session", "project_id", "session_id"),
        Index("ix_chat_messages_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ChatMessage id={self.id!s:.8} project={self.project_id!r} "
            f"tokens={self.tokens_used}>"
        )
