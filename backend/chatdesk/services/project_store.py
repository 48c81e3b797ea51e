"""
Project record store: every read and write of the projects table.

Design decisions:
  • Each operation opens its own short session and commits before
    returning. No session or lock is held across an LLM call.
  • Usage increments are ONE atomic statement:
        UPDATE projects SET total_tokens_used = total_tokens_used + :delta
        ... RETURNING total_tokens_used, monthly_token_limit
    so concurrent charges against the same project never lose updates.
  • Status writes that race with admin actions are conditional
    (e.g. lazy expiry only flips rows whose expiry_date really passed).
  • Every call runs under STORE_TIMEOUT_SECONDS. Driver errors and
    timeouts surface as StoreUnavailable; callers never see SQLAlchemy.
  • Reads return typed records (ProjectRecord, SubscriptionStats),
    decoded field by field.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatdesk.core.config import Settings
from chatdesk.core.errors import ProjectNotFound, StoreUnavailable
from chatdesk.models.project import Project, ProjectStatus
from chatdesk.services.records import ProjectRecord, UsageTotals
from chatdesk.services.subscription import add_months

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXPIRING_SOON_DAYS = 7
_HIGH_USAGE_PERCENT = 80
_EDITABLE_FIELDS = frozenset(
    {"name", "description", "knowledge_text", "ai_model", "monthly_token_limit"}
)


class ProjectExists(Exception):
    """A project with this external id already exists."""


# ── Aggregate result types ──────────────────────────────────
class StatusBreakdown(BaseModel):
    """One row of the per-status aggregation."""

    status: str
    count: int
    total_tokens: int
    total_limit: int


class SubscriptionStats(BaseModel):
    by_status: list[StatusBreakdown]
    expiring_soon: int
    high_usage_count: int


class ProjectStore:
    """Async access to project records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = settings.STORE_TIMEOUT_SECONDS

    async def _run(
        self,
        operation: str,
        fn: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """Run fn in a fresh session under the store timeout."""

        async def _in_session() -> T:
            async with self._session_factory() as session:
                return await fn(session)

        try:
            return await asyncio.wait_for(_in_session(), timeout=self._timeout)
        except IntegrityError:
            raise
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.error("Project store %s failed: %s", operation, type(exc).__name__)
            raise StoreUnavailable(f"Project store unavailable during {operation}") from exc

    # ── Reads ───────────────────────────────────────────────
    async def find_by_external_id(self, project_id: str) -> ProjectRecord | None:
        async def _op(session: AsyncSession) -> ProjectRecord | None:
            stmt = select(Project).where(Project.project_id == project_id)
            row = (await session.execute(stmt)).scalar_one_or_none()
            return ProjectRecord.from_row(row) if row is not None else None

        return await self._run("find_by_external_id", _op)

    async def get(self, project_id: str) -> ProjectRecord:
        """Like find_by_external_id but raises ProjectNotFound."""
        record = await self.find_by_external_id(project_id)
        if record is None:
            raise ProjectNotFound(project_id)
        return record

    async def list_projects(
        self,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ProjectRecord]:
        """Non-deleted projects, newest first."""

        async def _op(session: AsyncSession) -> list[ProjectRecord]:
            stmt = select(Project).where(Project.status != ProjectStatus.DELETED)
            if status is not None:
                stmt = stmt.where(Project.status == status)
            stmt = stmt.order_by(Project.created_at.desc()).limit(limit).offset(offset)
            rows = (await session.execute(stmt)).scalars().all()
            return [ProjectRecord.from_row(row) for row in rows]

        return await self._run("list_projects", _op)

    async def find_expired_active(self, now: datetime.datetime) -> list[ProjectRecord]:
        """Projects past expiry whose stored status has not caught up."""

        async def _op(session: AsyncSession) -> list[ProjectRecord]:
            stmt = select(Project).where(_overdue_filter(now))
            rows = (await session.execute(stmt)).scalars().all()
            return [ProjectRecord.from_row(row) for row in rows]

        return await self._run("find_expired_active", _op)

    async def find_reminder_due(
        self,
        now: datetime.datetime,
        reminder_days: int,
    ) -> list[ProjectRecord]:
        """Active projects inside the pre-expiry window without a reminder yet."""
        window_end = now + datetime.timedelta(days=reminder_days)

        async def _op(session: AsyncSession) -> list[ProjectRecord]:
            stmt = select(Project).where(
                Project.status == ProjectStatus.ACTIVE,
                Project.reminder_sent.is_(False),
                Project.expiry_date > now,
                Project.expiry_date <= window_end,
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [ProjectRecord.from_row(row) for row in rows]

        return await self._run("find_reminder_due", _op)

    async def subscription_stats(self, now: datetime.datetime) -> SubscriptionStats:
        """Fleet-wide counts, aggregated in SQL."""

        async def _op(session: AsyncSession) -> SubscriptionStats:
            breakdown_stmt = select(
                Project.status,
                func.count().label("count"),
                func.coalesce(func.sum(Project.total_tokens_used), 0).label("total_tokens"),
                func.coalesce(func.sum(Project.monthly_token_limit), 0).label("total_limit"),
            ).group_by(Project.status).order_by(Project.status)
            rows = (await session.execute(breakdown_stmt)).all()

            expiring_stmt = select(func.count()).select_from(Project).where(
                Project.status == ProjectStatus.ACTIVE,
                Project.expiry_date >= now,
                Project.expiry_date <= now + datetime.timedelta(days=_EXPIRING_SOON_DAYS),
            )
            expiring_soon = (await session.execute(expiring_stmt)).scalar_one()

            # Integer comparison: used * 100 >= pct * limit
            high_usage_stmt = select(func.count()).select_from(Project).where(
                Project.status == ProjectStatus.ACTIVE,
                Project.total_tokens_used * 100 >= Project.monthly_token_limit * _HIGH_USAGE_PERCENT,
            )
            high_usage = (await session.execute(high_usage_stmt)).scalar_one()

            return SubscriptionStats(
                by_status=[StatusBreakdown.model_validate(dict(row._mapping)) for row in rows],
                expiring_soon=expiring_soon,
                high_usage_count=high_usage,
            )

        return await self._run("subscription_stats", _op)

    # ── Writes ──────────────────────────────────────────────
    async def create(
        self,
        *,
        project_id: str,
        name: str,
        monthly_token_limit: int,
        months: int,
        now: datetime.datetime,
        description: str = "",
        client_id: str | None = None,
        ai_model: str | None = None,
        knowledge_text: str = "",
    ) -> ProjectRecord:
        """Insert a new active project whose subscription starts now."""

        async def _op(session: AsyncSession) -> ProjectRecord:
            row = Project(
                project_id=project_id,
                name=name,
                description=description,
                client_id=client_id,
                status=ProjectStatus.ACTIVE,
                start_date=now,
                expiry_date=add_months(now, months),
                total_tokens_used=0,
                monthly_token_limit=monthly_token_limit,
                ai_model=ai_model,
                knowledge_text=knowledge_text,
                reminder_sent=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.commit()
            return ProjectRecord.from_row(row)

        try:
            return await self._run("create", _op)
        except IntegrityError as exc:
            raise ProjectExists(project_id) from exc

    async def atomic_increment_usage(
        self,
        project_id: str,
        delta: int,
        now: datetime.datetime,
    ) -> UsageTotals:
        """Add delta to total_tokens_used in one statement; return the new totals."""

        async def _op(session: AsyncSession) -> UsageTotals:
            stmt = (
                update(Project)
                .where(Project.project_id == project_id)
                .values(
                    total_tokens_used=Project.total_tokens_used + delta,
                    updated_at=now,
                )
                .returning(
                    Project.id,
                    Project.name,
                    Project.total_tokens_used,
                    Project.monthly_token_limit,
                )
                .execution_options(synchronize_session=False)
            )
            row = (await session.execute(stmt)).one_or_none()
            if row is None:
                await session.rollback()
                raise ProjectNotFound(project_id)
            await session.commit()
            return UsageTotals(
                project_pk=row.id,
                project_id=project_id,
                name=row.name,
                total_tokens_used=int(row.total_tokens_used),
                monthly_token_limit=int(row.monthly_token_limit),
            )

        return await self._run("atomic_increment_usage", _op)

    async def update_status(
        self,
        project_id: str,
        status: str,
        now: datetime.datetime,
    ) -> None:
        """Set status unconditionally (deleted rows excepted)."""
        if status not in ProjectStatus.ALL:
            raise ValueError(f"Unknown project status '{status}'")

        async def _op(session: AsyncSession) -> None:
            stmt = (
                update(Project)
                .where(
                    Project.project_id == project_id,
                    Project.status != ProjectStatus.DELETED,
                )
                .values(status=status, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise ProjectNotFound(project_id)

        await self._run("update_status", _op)

    async def soft_delete(self, project_id: str, now: datetime.datetime) -> None:
        async def _op(session: AsyncSession) -> None:
            stmt = (
                update(Project)
                .where(Project.project_id == project_id)
                .values(status=ProjectStatus.DELETED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                raise ProjectNotFound(project_id)

        await self._run("soft_delete", _op)

    async def mark_expired(self, project_id: str, now: datetime.datetime) -> bool:
        """
        Lazy-expiry write. Only flips the row if it is still overdue, so a
        renewal that lands between the read and this write is not undone.

        Returns True if the row changed.
        """

        async def _op(session: AsyncSession) -> bool:
            stmt = (
                update(Project)
                .where(Project.project_id == project_id, _overdue_filter(now))
                .values(status=ProjectStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

        return await self._run("mark_expired", _op)

    async def expire_overdue(self, now: datetime.datetime) -> list[ProjectRecord]:
        """
        Sweep step: batch-flip every overdue project to expired.

        Returns the records that were flipped (as they were before the
        update). Re-running finds nothing once applied.
        """

        async def _op(session: AsyncSession) -> list[ProjectRecord]:
            rows = (await session.execute(select(Project).where(_overdue_filter(now)))).scalars().all()
            if not rows:
                return []
            records = [ProjectRecord.from_row(row) for row in rows]

            stmt = (
                update(Project)
                .where(Project.id.in_([r.id for r in records]), _overdue_filter(now))
                .values(status=ProjectStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
            await session.commit()
            return records

        return await self._run("expire_overdue", _op)

    async def update_expiry(
        self,
        project_id: str,
        new_expiry: datetime.datetime,
        now: datetime.datetime,
        *,
        reset_usage: bool = False,
        new_limit: int | None = None,
    ) -> ProjectRecord:
        """Renewal write: new expiry, status active, reminder flag cleared."""
        values: dict = {
            "expiry_date": new_expiry,
            "status": ProjectStatus.ACTIVE,
            "reminder_sent": False,
            "updated_at": now,
        }
        if reset_usage:
            values["total_tokens_used"] = 0
        if new_limit is not None:
            values["monthly_token_limit"] = new_limit

        return await self._update_and_fetch("update_expiry", project_id, values)

    async def update_limit(
        self,
        project_id: str,
        new_limit: int,
        now: datetime.datetime,
    ) -> ProjectRecord:
        return await self._update_and_fetch(
            "update_limit",
            project_id,
            {"monthly_token_limit": new_limit, "updated_at": now},
        )

    async def reset_usage(self, project_id: str, now: datetime.datetime) -> ProjectRecord:
        return await self._update_and_fetch(
            "reset_usage",
            project_id,
            {"total_tokens_used": 0, "updated_at": now},
        )

    async def mark_reminder_sent(self, project_pk, now: datetime.datetime) -> bool:  # type: ignore[no-untyped-def]
        """Set reminder_sent once; False if another sweep got there first."""

        async def _op(session: AsyncSession) -> bool:
            stmt = (
                update(Project)
                .where(Project.id == project_pk, Project.reminder_sent.is_(False))
                .values(reminder_sent=True, last_reminder_date=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

        return await self._run("mark_reminder_sent", _op)

    async def clear_reminder_sent(self, project_pk, now: datetime.datetime) -> None:  # type: ignore[no-untyped-def]
        """Re-arm the reminder after its notification could not be logged."""

        async def _op(session: AsyncSession) -> None:
            stmt = (
                update(Project)
                .where(Project.id == project_pk)
                .values(reminder_sent=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.execute(stmt)
            await session.commit()

        await self._run("clear_reminder_sent", _op)

    async def update_details(
        self,
        project_id: str,
        fields: dict,
        now: datetime.datetime,
    ) -> ProjectRecord:
        """In-place edit of descriptive fields and quota; deleted rows are rejected."""
        unknown = set(fields) - _EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {sorted(unknown)}")
        return await self._update_and_fetch(
            "update_details",
            project_id,
            {**fields, "updated_at": now},
        )

    async def _update_and_fetch(
        self,
        operation: str,
        project_id: str,
        values: dict,
    ) -> ProjectRecord:
        async def _op(session: AsyncSession) -> ProjectRecord:
            stmt = (
                update(Project)
                .where(
                    Project.project_id == project_id,
                    Project.status != ProjectStatus.DELETED,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                raise ProjectNotFound(project_id)
            await session.commit()

            row = (
                await session.execute(select(Project).where(Project.project_id == project_id))
            ).scalar_one()
            return ProjectRecord.from_row(row)

        return await self._run(operation, _op)


def _overdue_filter(now: datetime.datetime):  # type: ignore[no-untyped-def]
    """expiry_date < now AND status not in (expired, deleted)."""
    return and_(
        Project.expiry_date < now,
        Project.status.not_in([ProjectStatus.EXPIRED, ProjectStatus.DELETED]),
    )
