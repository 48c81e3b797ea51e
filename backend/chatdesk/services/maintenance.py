"""
Maintenance sweep: reconciles stored status with real expiry time.

run_maintenance_sweep() is idempotent. Each run:
  1. flips every non-deleted project with expiry_date < now and
     status != expired to expired, logging one `expired` notification each;
  2. logs one `expiry_reminder` for active projects inside the reminder
     window (EXPIRY_REMINDER_DAYS) and sets their reminder_sent flag.
     The flag is set first and cleared again if the log write fails.

The sweep is the backstop for the evaluator's lazy expiry: projects with
no traffic still get their status corrected.
expire_lazily() is the read-time counterpart used by the chat and admin
paths; it logs the same `expired` notification.

MaintenanceScheduler runs the sweep on a fixed interval. A failed cycle
is logged and retried on the next tick, not immediately.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
from dataclasses import dataclass

from chatdesk.core.config import Settings
from chatdesk.core.errors import StoreUnavailable
from chatdesk.models.notification import NotificationType
from chatdesk.services.notifications import NotificationLog
from chatdesk.services.project_store import ProjectStore
from chatdesk.services.records import ProjectRecord, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SweepResult:
    expired: int
    reminders: int
    failures: int


async def run_maintenance_sweep(
    store: ProjectStore,
    notifications: NotificationLog,
    settings: Settings,
    now: datetime.datetime | None = None,
) -> SweepResult:
    """
    One sweep pass.

    The batch status update either happens or raises StoreUnavailable.
    Per-project notification writes are independent: a failure is
    logged, counted, and the sweep continues with the next project.
    """
    now = now or utcnow()
    logger.info("Running subscription maintenance at %s", now.isoformat())

    failures = 0

    # ── 1. Expire overdue projects ──────────────────────────
    expired = await store.expire_overdue(now)
    for project in expired:
        try:
            await _record_expiry(notifications, project, now)
        except StoreUnavailable:
            failures += 1
            logger.warning("Could not log expiry for project %s", project.project_id)

    if expired:
        logger.info("Marked %d projects as expired during maintenance", len(expired))

    # ── 2. Pre-expiry reminders ─────────────────────────────
    reminders = 0
    due = await store.find_reminder_due(now, settings.EXPIRY_REMINDER_DAYS)
    for project in due:
        try:
            if not await store.mark_reminder_sent(project.id, now):
                continue
        except StoreUnavailable:
            failures += 1
            logger.warning("Could not flag expiry reminder for project %s", project.project_id)
            continue

        days_left = (project.expiry_date - now).total_seconds() / 86_400
        try:
            await notifications.record(
                project.id,
                NotificationType.EXPIRY_REMINDER,
                f"Subscription for project {project.name} expires in {days_left:.1f} day(s)",
                now=now,
            )
            reminders += 1
        except StoreUnavailable:
            failures += 1
            logger.warning("Could not send expiry reminder for project %s", project.project_id)
            # Re-arm so the next sweep retries the reminder.
            try:
                await store.clear_reminder_sent(project.id, now)
            except StoreUnavailable:
                logger.error("Expiry reminder for project %s is lost", project.project_id)

    logger.info(
        "Subscription maintenance completed: expired=%d reminders=%d failures=%d",
        len(expired), reminders, failures,
    )
    return SweepResult(expired=len(expired), reminders=reminders, failures=failures)


async def expire_lazily(
    store: ProjectStore,
    notifications: NotificationLog,
    project: ProjectRecord,
    now: datetime.datetime,
) -> bool:
    """
    Persist an expiry noticed at read time (chat or admin status check).

    Logs the same `expired` notification the sweep would, but only when
    this call actually flipped the row, so a project is logged once no
    matter which path expired it.
    """
    if not await store.mark_expired(project.project_id, now):
        return False
    logger.info("Subscription expired on access: %s", project.project_id)
    await _record_expiry(notifications, project, now)
    return True


async def _record_expiry(
    notifications: NotificationLog,
    project: ProjectRecord,
    now: datetime.datetime,
) -> None:
    await notifications.record(
        project.id,
        NotificationType.EXPIRED,
        f"Subscription expired for project: {project.name}",
        now=now,
    )


class MaintenanceScheduler:
    """Background loop running the sweep every MAINTENANCE_INTERVAL_SECONDS."""

    def __init__(
        self,
        store: ProjectStore,
        notifications: NotificationLog,
        settings: Settings,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._settings = settings
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="maintenance-sweep")
        logger.info(
            "Maintenance scheduler started (interval=%.0fs)",
            self._settings.MAINTENANCE_INTERVAL_SECONDS,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Maintenance scheduler stopped")

    async def run_once(self) -> SweepResult | None:
        """One guarded cycle; errors are logged, never raised."""
        try:
            return await run_maintenance_sweep(self._store, self._notifications, self._settings)
        except StoreUnavailable:
            logger.warning("Subscription maintenance skipped: store unavailable")
        except Exception:
            logger.exception("Subscription maintenance failed")
        return None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.MAINTENANCE_INTERVAL_SECONDS)
            await self.run_once()
