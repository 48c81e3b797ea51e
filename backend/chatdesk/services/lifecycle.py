"""
Subscription state machine.

    active ──suspend──▶ suspended ──reactivate──▶ active   (only before expiry)
    active | suspended ──(time or sweep)──▶ expired
    expired ──renew──▶ active
    any ──soft_delete──▶ deleted                            (terminal)

Every admin transition is logged to the notification log; the log is the
only place a suspension reason is kept. Audit writes happen after the
state change commits and are best-effort: a failed audit write is logged,
the transition stands.
"""

from __future__ import annotations

import datetime
import logging

from chatdesk.core.config import Settings
from chatdesk.core.errors import AlreadyExpired, InvalidRequest, InvalidTransition
from chatdesk.models.notification import NotificationType
from chatdesk.models.project import ProjectStatus
from chatdesk.services.notifications import NotificationDispatcher, NotificationLog
from chatdesk.services.project_store import ProjectStore
from chatdesk.services.records import ProjectRecord, utcnow
from chatdesk.services.subscription import renewal_expiry

logger = logging.getLogger(__name__)


class SubscriptionManager:
    """Admin-driven status transitions for a project subscription."""

    def __init__(
        self,
        store: ProjectStore,
        notifications: NotificationLog,
        dispatcher: NotificationDispatcher,
        settings: Settings,
    ) -> None:
        self._store = store
        self._notifications = notifications
        self._dispatcher = dispatcher
        self._settings = settings

    async def renew(
        self,
        project_id: str,
        months: int,
        *,
        reset_tokens: bool = True,
        new_limit: int | None = None,
        extend_from_now: bool = False,
        now: datetime.datetime | None = None,
    ) -> ProjectRecord:
        """
        Extend the subscription by `months` and make it active.

        Expired projects renew from now; live ones extend from their current
        expiry. Optionally zero the usage counter and/or set a new quota
        (ignored unless > 0).

        Raises:
            InvalidRequest:     months outside 1..12.
            InvalidTransition:  the project is deleted.
            ProjectNotFound:    no such project.
        """
        now = now or utcnow()
        project = await self._store.get(project_id)
        _reject_deleted(project, "renew")

        new_expiry = renewal_expiry(project, months, now, extend_from_now=extend_from_now)
        limit = new_limit if new_limit is not None and new_limit > 0 else None

        updated = await self._store.update_expiry(
            project_id,
            new_expiry,
            now,
            reset_usage=reset_tokens,
            new_limit=limit,
        )
        logger.info("Subscription renewed: %s for %d month(s) until %s", project_id, months, new_expiry)
        self._audit(
            project,
            NotificationType.RENEWAL,
            f"Subscription renewed for {months} month(s) for project: {project.name}",
            now,
        )
        return updated

    async def reactivate(
        self,
        project_id: str,
        *,
        now: datetime.datetime | None = None,
    ) -> ProjectRecord:
        """
        Bring a suspended (or stale) project back to active.

        Raises:
            AlreadyExpired:     now >= expiry_date; status is left untouched.
            InvalidTransition:  already active, or deleted.
        """
        now = now or utcnow()
        project = await self._store.get(project_id)
        _reject_deleted(project, "reactivate")

        if now >= project.expiry_date:
            raise AlreadyExpired("Cannot reactivate expired subscription. Please renew first.")
        if project.status == ProjectStatus.ACTIVE:
            raise InvalidTransition("Subscription is already active")

        await self._store.update_status(project_id, ProjectStatus.ACTIVE, now)
        logger.info("Subscription reactivated: %s", project_id)
        self._audit(
            project,
            NotificationType.REACTIVATION,
            f"Subscription reactivated for project: {project.name}",
            now,
        )
        return await self._store.get(project_id)

    async def suspend(
        self,
        project_id: str,
        reason: str = "",
        *,
        now: datetime.datetime | None = None,
    ) -> ProjectRecord:
        """Flip to suspended. The reason lives only in the notification log."""
        now = now or utcnow()
        project = await self._store.get(project_id)
        _reject_deleted(project, "suspend")

        await self._store.update_status(project_id, ProjectStatus.SUSPENDED, now)

        message = f"Subscription suspended for project: {project.name}"
        if reason:
            message += f" (Reason: {reason})"
        logger.warning("Subscription suspended: %s", project_id)
        self._audit(project, NotificationType.SUSPENSION, message, now)
        return await self._store.get(project_id)

    async def soft_delete(
        self,
        project_id: str,
        *,
        now: datetime.datetime | None = None,
    ) -> None:
        now = now or utcnow()
        await self._store.soft_delete(project_id, now)
        logger.info("Project soft-deleted: %s", project_id)

    async def update_limit(
        self,
        project_id: str,
        new_limit: int,
        *,
        now: datetime.datetime | None = None,
    ) -> ProjectRecord:
        if new_limit <= 0:
            raise InvalidRequest("Token limit must be greater than 0")
        now = now or utcnow()
        updated = await self._store.update_limit(project_id, new_limit, now)
        self._audit(
            updated,
            NotificationType.LIMIT_UPDATE,
            f"Token limit updated to {new_limit} for project: {updated.name}",
            now,
        )
        return updated

    async def reset_usage(
        self,
        project_id: str,
        *,
        now: datetime.datetime | None = None,
    ) -> ProjectRecord:
        now = now or utcnow()
        updated = await self._store.reset_usage(project_id, now)
        logger.info("Token usage reset: %s", project_id)
        self._audit(
            updated,
            NotificationType.USAGE_RESET,
            f"Token usage reset for project: {updated.name}",
            now,
        )
        return updated

    def _audit(
        self,
        project: ProjectRecord,
        notification_type: str,
        message: str,
        now: datetime.datetime,
    ) -> None:
        self._dispatcher.dispatch(
            f"{notification_type}:{project.project_id}",
            lambda: self._notifications.record(project.id, notification_type, message, now=now),
        )


def _reject_deleted(project: ProjectRecord, action: str) -> None:
    if project.status == ProjectStatus.DELETED:
        raise InvalidTransition(f"Cannot {action} a deleted project")
