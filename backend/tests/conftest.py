import datetime
import json

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select, update

from chatdesk.auth.hashing import hash_api_key
from chatdesk.core.config import Settings
from chatdesk.core.context import build_context
from chatdesk.core.database import Base
from chatdesk.models.notification import Notification
from chatdesk.models.project import Project, ProjectStatus
from chatdesk.services.llm_client import LLMClient
from chatdesk.services.records import utcnow

import chatdesk.models.chat_message  # noqa: F401

ADMIN_KEY = "cd_admin_test_key"


class FakeOpenAI:
    """Stands in for the chat completions endpoint behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.status_code = 200
        self.reply = "We are open 9 to 5."
        self.prompt_tokens = 60
        self.completion_tokens = 40
        self.raise_timeout = False
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.raise_timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": {"message": "upstream failure"}})
        model = json.loads(request.content)["model"]
        return httpx.Response(
            200,
            json={
                "model": model,
                "choices": [{"message": {"role": "assistant", "content": self.reply}}],
                "usage": {
                    "prompt_tokens": self.prompt_tokens,
                    "completion_tokens": self.completion_tokens,
                    "total_tokens": self.prompt_tokens + self.completion_tokens,
                },
            },
        )

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'chatdesk.db'}",
        ADMIN_API_KEY_HASH=hash_api_key(ADMIN_KEY),
        OPENAI_API_KEY="sk-test",
        AUTO_CREATE_SCHEMA=True,
        MAINTENANCE_ENABLED=False,
        STORE_TIMEOUT_SECONDS=30,
        NOTIFICATION_TIMEOUT_SECONDS=30,
    )


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest_asyncio.fixture
async def ctx(settings, fake_openai):
    context = build_context(settings, llm=LLMClient(settings, transport=fake_openai.transport()))
    async with context.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield context
    await context.aclose()


@pytest.fixture
def seed(ctx):
    """Create a project, then force its counters/dates into a given state."""

    async def _seed(
        project_id: str = "acme",
        *,
        limit: int = 1000,
        used: int = 0,
        expiry: datetime.datetime | None = None,
        status: str = ProjectStatus.ACTIVE,
        knowledge_text: str = "Opening hours: 9 to 5.",
    ):
        await ctx.store.create(
            project_id=project_id,
            name=f"{project_id} bot",
            monthly_token_limit=limit,
            months=1,
            now=utcnow(),
            knowledge_text=knowledge_text,
        )
        values: dict = {"total_tokens_used": used, "status": status}
        if expiry is not None:
            values["expiry_date"] = expiry
        async with ctx.session_factory() as session:
            await session.execute(
                update(Project).where(Project.project_id == project_id).values(**values)
            )
            await session.commit()
        return await ctx.store.get(project_id)

    return _seed


@pytest.fixture
def notification_types(ctx):
    """Types of every notification logged for a project, oldest first."""

    async def _types(project_id: str) -> list[str]:
        project = await ctx.store.get(project_id)
        async with ctx.session_factory() as session:
            stmt = (
                select(Notification.type)
                .where(Notification.project_id == project.id)
                .order_by(Notification.sent_at)
            )
            return list((await session.execute(stmt)).scalars().all())

    return _types
