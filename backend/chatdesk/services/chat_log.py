"""
Chat message log: append, history, rating.

Messages are append-only; rate() is the only update and touches only the
rating columns.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatdesk.core.config import Settings
from chatdesk.core.errors import InvalidRequest, StoreUnavailable
from chatdesk.models.chat_message import ChatMessage
from chatdesk.services.records import ensure_utc

logger = logging.getLogger(__name__)

RATINGS = ("positive", "negative")
MAX_HISTORY = 100


class ChatMessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: str
    user_id: str | None
    message: str
    response: str
    tokens_used: int
    model: str
    rating: str | None
    created_at: datetime.datetime


class ChatLog:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._timeout = settings.STORE_TIMEOUT_SECONDS

    async def save(
        self,
        *,
        project_id: str,
        session_id: str,
        user_id: str | None,
        message: str,
        response: str,
        tokens_used: int,
        model: str,
        processing_time_ms: int,
        now: datetime.datetime,
    ) -> uuid.UUID:
        row = ChatMessage(
            id=uuid.uuid4(),
            project_id=project_id,
            session_id=session_id,
            user_id=user_id,
            message=message,
            response=response,
            tokens_used=tokens_used,
            model=model,
            processing_time_ms=processing_time_ms,
            created_at=now,
        )

        async def _op() -> uuid.UUID:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                return row.id

        return await self._guard("save", _op)

    async def history(
        self,
        project_id: str,
        *,
        session_id: str | None = None,
        limit: int = 50,
    ) -> list[ChatMessageOut]:
        """Latest `limit` messages, returned oldest first."""
        limit = max(1, min(limit, MAX_HISTORY))

        async def _op() -> list[ChatMessageOut]:
            async with self._session_factory() as session:
                stmt = select(ChatMessage).where(ChatMessage.project_id == project_id)
                if session_id:
                    stmt = stmt.where(ChatMessage.session_id == session_id)
                stmt = stmt.order_by(ChatMessage.created_at.desc()).limit(limit)
                rows = (await session.execute(stmt)).scalars().all()

            messages = [ChatMessageOut.model_validate(row) for row in rows]
            messages = [m.model_copy(update={"created_at": ensure_utc(m.created_at)}) for m in messages]
            messages.reverse()
            return messages

        return await self._guard("history", _op)

    async def rate(
        self,
        project_id: str,
        message_id: uuid.UUID,
        rating: str,
        feedback: str,
        now: datetime.datetime,
    ) -> bool:
        """Set the rating; False if no such message under this project."""
        if rating not in RATINGS:
            raise InvalidRequest("Rating must be 'positive' or 'negative'")

        async def _op() -> bool:
            async with self._session_factory() as session:
                stmt = (
                    update(ChatMessage)
                    .where(ChatMessage.id == message_id, ChatMessage.project_id == project_id)
                    .values(rating=rating, feedback=feedback, rated_at=now)
                    .execution_options(synchronize_session=False)
                )
                result = await session.execute(stmt)
                await session.commit()
                return result.rowcount > 0

        return await self._guard("rate", _op)

    async def _guard(self, operation: str, fn):  # type: ignore[no-untyped-def]
        try:
            return await asyncio.wait_for(fn(), timeout=self._timeout)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as exc:
            logger.error("Chat log %s failed: %s", operation, type(exc).__name__)
            raise StoreUnavailable(f"Chat log unavailable during {operation}") from exc
