"""
Typed, read-only snapshots of stored rows.

Services never pass ORM instances around: the store decodes each row
field-by-field into one of these frozen dataclasses, normalising
datetimes to aware UTC on the way out (SQLite hands back naive values).
"""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass

from chatdesk.models.project import Project


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)


@dataclass(frozen=True, slots=True)
class ProjectRecord:
    """Snapshot of one project as read from the store."""

    id: uuid.UUID
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
    knowledge_text: str
    reminder_sent: bool
    created_at: datetime.datetime
    updated_at: datetime.datetime

    @classmethod
    def from_row(cls, row: Project) -> ProjectRecord:
        return cls(
            id=row.id,
            project_id=row.project_id,
            name=row.name,
            description=row.description or "",
            client_id=row.client_id,
            status=row.status,
            start_date=ensure_utc(row.start_date),
            expiry_date=ensure_utc(row.expiry_date),
            total_tokens_used=int(row.total_tokens_used),
            monthly_token_limit=int(row.monthly_token_limit),
            ai_model=row.ai_model,
            knowledge_text=row.knowledge_text or "",
            reminder_sent=bool(row.reminder_sent),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )


@dataclass(frozen=True, slots=True)
class UsageTotals:
    """Result of one atomic usage increment."""

    project_pk: uuid.UUID
    project_id: str
    name: str
    total_tokens_used: int
    monthly_token_limit: int
