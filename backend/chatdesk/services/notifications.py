"""
Notification log and background dispatch.

NotificationLog is an append-only table used for two things:
  • dedup: "was a <type> notification logged for this project in the
    last N hours?" is checked before inserting a new one;
  • history: the admin notification list.

NotificationDispatcher runs best-effort side effects (notification
writes, lazy-expiry status writes) as fire-and-forget asyncio tasks.
Each task gets its own timeout; any failure is logged and swallowed so
it can never fail or slow down the request that scheduled it.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ConfigDict
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatdesk.core.config import Settings
from chatdesk.core.errors import StoreUnavailable
from chatdesk.models.notification import Notification
from chatdesk.services.records import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str
    message: str
    sent_at: datetime.datetime


class NotificationLog:
    """Reads and appends rows in the notifications table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = settings.STORE_TIMEOUT_SECONDS
        # Serialises dedup-then-insert per (project, type) within this process.
        # An entry lives only while some caller holds or waits on its lock.
        self._dedup_locks: dict[tuple[uuid.UUID, str], asyncio.Lock] = {}
        self._dedup_users: Counter[tuple[uuid.UUID, str]] = Counter()

    async def was_recently_sent(
        self,
        project_pk: uuid.UUID,
        notification_type: str,
        within_hours: int,
        *,
        now: datetime.datetime | None = None,
    ) -> bool:
        cutoff = (now or utcnow()) - datetime.timedelta(hours=within_hours)

        async def _op() -> bool:
            async with self._session_factory() as session:
                stmt = select(func.count()).select_from(Notification).where(
                    Notification.project_id == project_pk,
                    Notification.type == notification_type,
                    Notification.sent_at >= cutoff,
                )
                return (await session.execute(stmt)).scalar_one() > 0

        return await self._guard("was_recently_sent", _op)

    async def record(
        self,
        project_pk: uuid.UUID,
        notification_type: str,
        message: str,
        *,
        now: datetime.datetime | None = None,
    ) -> None:
        async def _op() -> None:
            async with self._session_factory() as session:
                session.add(
                    Notification(
                        project_id=project_pk,
                        type=notification_type,
                        message=message,
                        sent_at=now or utcnow(),
                    )
                )
                await session.commit()

        await self._guard("record", _op)
        logger.info("Notification logged: %s for project %s", notification_type, project_pk)

    async def record_unless_recent(
        self,
        project_pk: uuid.UUID,
        notification_type: str,
        message: str,
        within_hours: int,
        *,
        now: datetime.datetime | None = None,
    ) -> bool:
        """Dedup read, then insert. Returns True if a row was written."""
        key = (project_pk, notification_type)
        lock = self._dedup_locks.setdefault(key, asyncio.Lock())
        self._dedup_users[key] += 1
        try:
            async with lock:
                if await self.was_recently_sent(project_pk, notification_type, within_hours, now=now):
                    logger.debug(
                        "Suppressed %s for project %s (sent within %dh)",
                        notification_type, project_pk, within_hours,
                    )
                    return False
                await self.record(project_pk, notification_type, message, now=now)
                return True
        finally:
            self._dedup_users[key] -= 1
            if not self._dedup_users[key]:
                del self._dedup_users[key]
                del self._dedup_locks[key]

    @property
    def dedup_keys(self) -> int:
        """(project, type) pairs with a dedup check in flight."""
        return len(self._dedup_locks)

    async def list_for_project(
        self,
        project_pk: uuid.UUID,
        limit: int = 50,
    ) -> list[NotificationOut]:
        async def _op() -> list[NotificationOut]:
            async with self._session_factory() as session:
                stmt = (
                    select(Notification)
                    .where(Notification.project_id == project_pk)
                    .order_by(Notification.sent_at.desc())
                    .limit(limit)
                )
                rows = (await session.execute(stmt)).scalars().all()
                return [
                    NotificationOut(
                        id=row.id,
                        type=row.type,
                        message=row.message,
                        sent_at=ensure_utc(row.sent_at),
                    )
                    for row in rows
                ]

        return await self._guard("list_for_project", _op)

    async def _guard(self, operation: str, fn: Callable[[], Awaitable]):  # type: ignore[no-untyped-def]
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeout)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.error("Notification log %s failed: %s", operation, type(exc).__name__)
            raise StoreUnavailable(f"Notification log unavailable during {operation}") from exc


class NotificationDispatcher:
    """
    Fire-and-forget runner for best-effort background work.

    Tasks are tracked so they are not garbage-collected mid-flight and so
    shutdown (and tests) can wait for them with drain().
    """

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.NOTIFICATION_TIMEOUT_SECONDS
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, label: str, factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Schedule factory() in the background; never raises."""
        task = asyncio.create_task(self._run(label, factory), name=f"dispatch:{label}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, label: str, factory: Callable[[], Awaitable[object]]) -> None:
        try:
            await asyncio.wait_for(factory(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Background task %s timed out after %.1fs", label, self._timeout)
        except Exception:
            logger.exception("Background task %s failed", label)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every task scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
