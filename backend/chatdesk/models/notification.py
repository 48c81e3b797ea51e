"""
Notification log model.

Each row is an immutable record that a notification of some type was
emitted for a project. The table is read only for deduplication
("was one of this type sent in the last N hours?") and for the admin
notification history. It is not a delivery queue.
"""

import datetime
import uuid

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from chatdesk.core.database import Base


class NotificationType:
    MONTHLY_LIMIT = "monthly_limit"
    USAGE_WARNING = "usage_warning"
    EXPIRED = "expired"
    EXPIRY_REMINDER = "expiry_reminder"
    RENEWAL = "renewal"
    SUSPENSION = "suspension"
    REACTIVATION = "reactivation"
    LIMIT_UPDATE = "limit_update"
    USAGE_RESET = "usage_reset"


class Notification(Base):
    """One logged notification."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    sent_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # Dedup lookups filter on all three columns.
    __table_args__ = (
        Index("ix_notifications_dedup", "project_id", "type", "sent_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification project={self.project_id!s:.8} type={self.type}>"
