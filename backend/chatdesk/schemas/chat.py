"""
Pydantic v2 schemas for the widget chat endpoints.

The widget sends only the message and its session identifiers; token
counts and usage always come from the server.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from chatdesk.services.chat_log import ChatMessageOut


# ── Request schemas ─────────────────────────────────────────
class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(
        ...,
        min_length=1,
        max_length=4000,
        examples=["What are your opening hours?"],
    )
    session_id: str = Field(default="", max_length=128, examples=["sess_1729150000_ab12cd34"])
    user_id: str | None = Field(default=None, max_length=255)


class RateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rating: Literal["positive", "negative"]
    feedback: str = Field(default="", max_length=2000)


# ── Response schemas ────────────────────────────────────────
class UsageOut(BaseModel):
    total_tokens: int
    limit: int
    usage_percent: float


class ChatResponse(BaseModel):
    """
    status: "success", "error", or a subscription block reason
    (expired, suspended, deleted, inactive, limit_exceeded).
    """

    status: str
    response: str
    tokens_used: int = 0
    usage: UsageOut | None = None
    message_id: str | None = None


class ChatHistoryOut(BaseModel):
    project_id: str
    session_id: str | None
    count: int
    messages: list[ChatMessageOut]


class RateResponse(BaseModel):
    message: str
    rating: str
