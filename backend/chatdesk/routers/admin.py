"""
Admin router: project records and subscription lifecycle.

Every route requires the admin Bearer key. Domain errors
(ProjectNotFound, AlreadyExpired, InvalidTransition, StoreUnavailable)
are mapped to HTTP responses by the handlers registered in main.py.

Projects:
  POST   /admin/projects                       create with default quota
  GET    /admin/projects                       list (deleted excluded)
  GET    /admin/projects/{id}
  PATCH  /admin/projects/{id}                  edit name, knowledge, quota
  DELETE /admin/projects/{id}                  soft delete

Subscription:
  GET    /admin/projects/{id}/subscription     live status (lazy expiry)
  POST   /admin/projects/{id}/renew
  POST   /admin/projects/{id}/suspend
  POST   /admin/projects/{id}/reactivate
  GET    /admin/projects/{id}/usage            usage report + cost estimate
  POST   /admin/projects/{id}/limit
  POST   /admin/projects/{id}/usage/reset
  GET    /admin/projects/{id}/notifications
  GET    /admin/subscriptions/stats
  POST   /admin/maintenance/run                one sweep, now
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from chatdesk.auth.dependencies import require_admin
from chatdesk.core.context import AppContext
from chatdesk.models.project import ProjectStatus
from chatdesk.schemas.subscription import (
    LimitUpdate,
    NotificationListOut,
    ProjectCreate,
    ProjectOut,
    ProjectUpdate,
    RenewRequest,
    RenewResponse,
    StatusChangeOut,
    SubscriptionStatsOut,
    SubscriptionStatusOut,
    SuspendRequest,
    UsageReportOut,
)
from chatdesk.services.cost_calculator import estimate_cost
from chatdesk.services.maintenance import SweepResult, expire_lazily, run_maintenance_sweep
from chatdesk.services.records import utcnow
from chatdesk.services.subscription import (
    days_until_expiry,
    effective_status,
    remaining_tokens,
    usage_percent,
    usage_warnings,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Admin"])

Admin = Annotated[AppContext, Depends(require_admin)]


# ── Projects ────────────────────────────────────────────────
@router.post(
    "/projects",
    response_model=ProjectOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a project with an active subscription starting now",
)
async def create_project(payload: ProjectCreate, ctx: Admin) -> ProjectOut:
    settings = ctx.settings
    record = await ctx.store.create(
        project_id=payload.project_id,
        name=payload.name,
        description=payload.description,
        client_id=payload.client_id,
        ai_model=payload.ai_model,
        knowledge_text=payload.knowledge_text,
        monthly_token_limit=payload.monthly_token_limit or settings.DEFAULT_MONTHLY_TOKEN_LIMIT,
        months=payload.months or settings.DEFAULT_SUBSCRIPTION_MONTHS,
        now=utcnow(),
    )
    logger.info("Project created: %s (limit=%d)", record.project_id, record.monthly_token_limit)
    return ProjectOut.model_validate(record)


@router.get("/projects", response_model=list[ProjectOut], summary="List projects")
async def list_projects(
    ctx: Admin,
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[ProjectOut]:
    records = await ctx.store.list_projects(status=status_filter, limit=limit, offset=offset)
    return [ProjectOut.model_validate(r) for r in records]


@router.get("/projects/{project_id}", response_model=ProjectOut, summary="Get one project")
async def get_project(project_id: str, ctx: Admin) -> ProjectOut:
    return ProjectOut.model_validate(await ctx.store.get(project_id))


@router.patch(
    "/projects/{project_id}",
    response_model=ProjectOut,
    summary="Edit a project's name, description, knowledge text, model or quota",
)
async def update_project(project_id: str, payload: ProjectUpdate, ctx: Admin) -> ProjectOut:
    changes = payload.changes()
    record = await ctx.store.update_details(project_id, changes, utcnow())
    logger.info("Project updated: %s (%s)", project_id, ", ".join(sorted(changes)) or "no changes")
    return ProjectOut.model_validate(record)


@router.delete(
    "/projects/{project_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Soft-delete a project",
)
async def delete_project(project_id: str, ctx: Admin) -> Response:
    await ctx.subscriptions.soft_delete(project_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Subscription status / actions ───────────────────────────
@router.get(
    "/projects/{project_id}/subscription",
    response_model=SubscriptionStatusOut,
    summary="Live subscription status",
)
async def get_subscription_status(project_id: str, ctx: Admin) -> SubscriptionStatusOut:
    now = utcnow()
    project = await ctx.store.get(project_id)

    current = effective_status(project, now)
    if current == ProjectStatus.EXPIRED and project.status != ProjectStatus.EXPIRED:
        ctx.dispatcher.dispatch(
            f"lazy_expiry:{project_id}",
            lambda: expire_lazily(ctx.store, ctx.notifications, project, now),
        )

    days_left = days_until_expiry(project, now)
    return SubscriptionStatusOut(
        project_id=project.project_id,
        status=current,
        start_date=project.start_date,
        expiry_date=project.expiry_date,
        total_tokens_used=project.total_tokens_used,
        monthly_token_limit=project.monthly_token_limit,
        remaining_tokens=remaining_tokens(project.total_tokens_used, project.monthly_token_limit),
        usage_percentage=usage_percent(project.total_tokens_used, project.monthly_token_limit),
        days_until_expiry=days_left,
        is_active=current == ProjectStatus.ACTIVE and days_left > 0,
        needs_renewal=days_left <= ctx.settings.EXPIRY_REMINDER_DAYS,
    )


@router.post(
    "/projects/{project_id}/renew",
    response_model=RenewResponse,
    summary="Renew a subscription",
    description=(
        "Expired subscriptions renew from now; live ones extend from their "
        "current expiry date. Defaults: 1 month, usage reset."
    ),
)
async def renew_subscription(
    project_id: str,
    ctx: Admin,
    payload: RenewRequest | None = None,
) -> RenewResponse:
    payload = payload or RenewRequest()
    updated = await ctx.subscriptions.renew(
        project_id,
        payload.months,
        reset_tokens=payload.reset_tokens,
        new_limit=payload.new_token_limit,
        extend_from_now=payload.extend_from_now,
    )
    return RenewResponse(
        message=f"Subscription renewed for {payload.months} month(s)",
        new_expiry=updated.expiry_date,
        status=updated.status,
        tokens_reset=payload.reset_tokens,
        new_limit=updated.monthly_token_limit,
    )


@router.post(
    "/projects/{project_id}/suspend",
    response_model=StatusChangeOut,
    summary="Suspend a subscription",
)
async def suspend_subscription(
    project_id: str,
    ctx: Admin,
    payload: SuspendRequest | None = None,
) -> StatusChangeOut:
    payload = payload or SuspendRequest()
    updated = await ctx.subscriptions.suspend(project_id, payload.reason)
    return StatusChangeOut(
        message="Subscription suspended successfully",
        status=updated.status,
        expiry_date=updated.expiry_date,
    )


@router.post(
    "/projects/{project_id}/reactivate",
    response_model=StatusChangeOut,
    summary="Reactivate a suspended subscription",
)
async def reactivate_subscription(project_id: str, ctx: Admin) -> StatusChangeOut:
    updated = await ctx.subscriptions.reactivate(project_id)
    return StatusChangeOut(
        message="Subscription reactivated successfully",
        status=updated.status,
        expiry_date=updated.expiry_date,
    )


@router.get(
    "/projects/{project_id}/usage",
    response_model=UsageReportOut,
    summary="Token usage report with cost estimate",
)
async def get_usage_report(project_id: str, ctx: Admin) -> UsageReportOut:
    now = utcnow()
    project = await ctx.store.get(project_id)

    percent = usage_percent(project.total_tokens_used, project.monthly_token_limit)
    days_left = days_until_expiry(project, now)
    days_since_start = (now - project.start_date).total_seconds() / 86_400
    daily_average = int(project.total_tokens_used / days_since_start) if days_since_start > 0 else 0

    return UsageReportOut(
        project_id=project.project_id,
        status=effective_status(project, now),
        tokens_used=project.total_tokens_used,
        token_limit=project.monthly_token_limit,
        remaining_tokens=remaining_tokens(project.total_tokens_used, project.monthly_token_limit),
        usage_percentage=percent,
        days_until_expiry=days_left,
        daily_average=daily_average,
        estimated_cost_usd=estimate_cost(
            project.ai_model or ctx.settings.LLM_MODEL,
            project.total_tokens_used,
        ),
        warnings=usage_warnings(percent, days_left),
    )


@router.post(
    "/projects/{project_id}/limit",
    response_model=ProjectOut,
    summary="Update the monthly token limit",
)
async def update_token_limit(project_id: str, payload: LimitUpdate, ctx: Admin) -> ProjectOut:
    return ProjectOut.model_validate(await ctx.subscriptions.update_limit(project_id, payload.new_limit))


@router.post(
    "/projects/{project_id}/usage/reset",
    response_model=ProjectOut,
    summary="Reset the token usage counter to zero",
)
async def reset_token_usage(project_id: str, ctx: Admin) -> ProjectOut:
    return ProjectOut.model_validate(await ctx.subscriptions.reset_usage(project_id))


@router.get(
    "/projects/{project_id}/notifications",
    response_model=NotificationListOut,
    summary="Notification history, newest first",
)
async def get_project_notifications(
    project_id: str,
    ctx: Admin,
    limit: int = Query(default=50, ge=1, le=200),
) -> NotificationListOut:
    project = await ctx.store.get(project_id)
    notifications = await ctx.notifications.list_for_project(project.id, limit=limit)
    return NotificationListOut(
        project_id=project_id,
        count=len(notifications),
        notifications=notifications,
    )


# ── Fleet-wide ──────────────────────────────────────────────
@router.get(
    "/subscriptions/stats",
    response_model=SubscriptionStatsOut,
    summary="Subscription statistics across all projects",
)
async def get_subscription_stats(ctx: Admin) -> SubscriptionStatsOut:
    now = utcnow()
    stats = await ctx.store.subscription_stats(now)
    return SubscriptionStatsOut(
        by_status=stats.by_status,
        expiring_soon=stats.expiring_soon,
        high_usage_count=stats.high_usage_count,
        timestamp=now,
    )


@router.post("/maintenance/run", summary="Run one maintenance sweep now")
async def run_maintenance(ctx: Admin) -> dict[str, int]:
    result: SweepResult = await run_maintenance_sweep(ctx.store, ctx.notifications, ctx.settings)
    return {"expired": result.expired, "reminders": result.reminders, "failures": result.failures}
