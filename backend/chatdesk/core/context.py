"""
Application context: every long-lived collaborator, built once from Settings.

The app factory builds one AppContext in its lifespan and stores it on
app.state.ctx; routers reach services through the `get_context`
dependency. Tests build their own context against a throwaway database.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from chatdesk.core.config import Settings
from chatdesk.core.database import build_engine, build_session_factory
from chatdesk.services.chat import ChatService
from chatdesk.services.chat_log import ChatLog
from chatdesk.services.lifecycle import SubscriptionManager
from chatdesk.services.llm_client import LLMClient
from chatdesk.services.maintenance import MaintenanceScheduler
from chatdesk.services.metering import UsageMeter
from chatdesk.services.notifications import NotificationDispatcher, NotificationLog
from chatdesk.services.project_store import ProjectStore


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    store: ProjectStore
    notifications: NotificationLog
    dispatcher: NotificationDispatcher
    chat_log: ChatLog
    llm: LLMClient
    meter: UsageMeter
    subscriptions: SubscriptionManager
    chat: ChatService
    scheduler: MaintenanceScheduler

    async def aclose(self) -> None:
        """Stop background work and release connections."""
        await self.scheduler.stop()
        await self.dispatcher.drain()
        await self.llm.aclose()
        await self.engine.dispose()


def build_context(
    settings: Settings,
    *,
    llm: LLMClient | None = None,
    engine: AsyncEngine | None = None,
) -> AppContext:
    """Wire every component from settings; llm/engine may be injected."""
    engine = engine or build_engine(settings)
    session_factory = build_session_factory(engine)

    store = ProjectStore(session_factory, settings)
    notifications = NotificationLog(session_factory, settings)
    dispatcher = NotificationDispatcher(settings)
    chat_log = ChatLog(session_factory, settings)
    llm = llm or LLMClient(settings)
    meter = UsageMeter(store, notifications, dispatcher, settings)

    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        notifications=notifications,
        dispatcher=dispatcher,
        chat_log=chat_log,
        llm=llm,
        meter=meter,
        subscriptions=SubscriptionManager(store, notifications, dispatcher, settings),
        chat=ChatService(store, meter, llm, chat_log, notifications, dispatcher),
        scheduler=MaintenanceScheduler(store, notifications, settings),
    )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency: the context built by the app lifespan."""
    return request.app.state.ctx
