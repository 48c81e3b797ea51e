"""
Widget chat router: the public entry point that spends tokens.

POST /api/projects/{project_id}/chat
  1. Evaluates the project's subscription (expiry, status, quota).
  2. Blocked → 200 with status=<reason> and the user-facing message,
     so the widget can render it as a bot reply.
  3. Allowed → LLM call, then an atomic usage charge.
  4. LLM failure → 502 with an apologetic message; nothing is charged.

GET  /api/projects/{project_id}/chat/history
POST /api/projects/{project_id}/chat/messages/{message_id}/rate
"""

import logging
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from chatdesk.core.context import AppContext, get_context
from chatdesk.schemas.chat import (
    ChatHistoryOut,
    ChatRequest,
    ChatResponse,
    RateRequest,
    RateResponse,
    UsageOut,
)
from chatdesk.services.chat import STATUS_ERROR
from chatdesk.services.records import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Chat"])

Ctx = Annotated[AppContext, Depends(get_context)]


@router.post(
    "/{project_id}/chat",
    response_model=ChatResponse,
    summary="Send a widget chat message",
    description=(
        "Checks the subscription, asks the LLM, and charges the tokens "
        "used to the project. Blocked projects get their reason in `status`."
    ),
)
async def post_chat_message(
    project_id: str,
    payload: ChatRequest,
    ctx: Ctx,
):
    outcome = await ctx.chat.handle_message(
        project_id,
        payload.message,
        session_id=payload.session_id,
        user_id=payload.user_id,
    )

    body = ChatResponse(
        status=outcome.status,
        response=outcome.response,
        tokens_used=outcome.tokens_used,
        usage=(
            UsageOut(
                total_tokens=outcome.usage.total_tokens,
                limit=outcome.usage.limit,
                usage_percent=outcome.usage.usage_percent,
            )
            if outcome.usage is not None
            else None
        ),
        message_id=outcome.message_id,
    )

    if outcome.status == STATUS_ERROR:
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=body.model_dump(mode="json"),
        )
    return body


@router.get(
    "/{project_id}/chat/history",
    response_model=ChatHistoryOut,
    summary="Recent chat messages, oldest first",
)
async def get_chat_history(
    project_id: str,
    ctx: Ctx,
    session_id: str | None = Query(default=None, max_length=128),
    limit: int = Query(default=50, ge=1, le=100),
) -> ChatHistoryOut:
    messages = await ctx.chat_log.history(project_id, session_id=session_id, limit=limit)
    return ChatHistoryOut(
        project_id=project_id,
        session_id=session_id,
        count=len(messages),
        messages=messages,
    )


@router.post(
    "/{project_id}/chat/messages/{message_id}/rate",
    response_model=RateResponse,
    summary="Rate a chat reply (thumbs up/down)",
)
async def rate_chat_message(
    project_id: str,
    message_id: uuid.UUID,
    payload: RateRequest,
    ctx: Ctx,
) -> RateResponse:
    found = await ctx.chat_log.rate(
        project_id,
        message_id,
        payload.rating,
        payload.feedback,
        utcnow(),
    )
    if not found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found",
        )
    return RateResponse(message="Rating saved successfully", rating=payload.rating)
