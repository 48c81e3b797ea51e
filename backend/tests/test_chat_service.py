import datetime
import uuid

import pytest

from chatdesk.core.errors import InvalidRequest, ProjectNotFound
from chatdesk.models.notification import NotificationType
from chatdesk.models.project import ProjectStatus
from chatdesk.services.chat import STATUS_ERROR, STATUS_SUCCESS
from chatdesk.services.llm_client import USER_MESSAGES
from chatdesk.services.maintenance import run_maintenance_sweep
from chatdesk.services.records import utcnow
from chatdesk.services.subscription import BLOCK_MESSAGES, BlockReason


@pytest.mark.asyncio
async def test_reply_is_charged_and_logged(ctx, seed, fake_openai):
    await seed(limit=1000)

    outcome = await ctx.chat.handle_message("acme", "When are you open?", session_id="s1")

    assert outcome.status == STATUS_SUCCESS
    assert outcome.response == "We are open 9 to 5."
    assert outcome.tokens_used == 100
    assert outcome.usage.total_tokens == 100
    assert outcome.message_id is not None
    assert (await ctx.store.get("acme")).total_tokens_used == 100

    history = await ctx.chat_log.history("acme", session_id="s1")
    assert [m.message for m in history] == ["When are you open?"]
    assert history[0].tokens_used == 100


@pytest.mark.asyncio
async def test_crossing_the_limit_then_blocking(ctx, seed, fake_openai, notification_types):
    await seed(limit=1000, used=950)

    first = await ctx.chat.handle_message("acme", "hello")
    await ctx.dispatcher.drain()

    assert first.status == STATUS_SUCCESS
    assert first.usage.total_tokens == 1050
    assert await notification_types("acme") == [NotificationType.MONTHLY_LIMIT]

    second = await ctx.chat.handle_message("acme", "hello again")

    assert second.status == BlockReason.LIMIT_EXCEEDED.value
    assert second.response == BLOCK_MESSAGES[BlockReason.LIMIT_EXCEEDED]
    assert second.usage.total_tokens == 1050
    assert second.usage.limit == 1000
    assert second.blocked
    assert fake_openai.calls == 1


@pytest.mark.asyncio
async def test_llm_failure_charges_nothing(ctx, seed, fake_openai):
    await seed(used=10)
    fake_openai.status_code = 500

    outcome = await ctx.chat.handle_message("acme", "hello")

    assert outcome.status == STATUS_ERROR
    assert outcome.response == USER_MESSAGES["unknown"]
    assert outcome.tokens_used == 0
    assert (await ctx.store.get("acme")).total_tokens_used == 10
    assert await ctx.chat_log.history("acme") == []


@pytest.mark.asyncio
async def test_llm_rate_limit_message(ctx, seed, fake_openai):
    await seed()
    fake_openai.status_code = 429

    outcome = await ctx.chat.handle_message("acme", "hello")

    assert outcome.error == "rate_limited"
    assert outcome.response == USER_MESSAGES["rate_limited"]


@pytest.mark.asyncio
async def test_lazy_expiry_is_persisted_and_logged(ctx, seed, fake_openai, notification_types):
    await seed(expiry=utcnow() - datetime.timedelta(minutes=5))

    outcome = await ctx.chat.handle_message("acme", "hello")
    await ctx.dispatcher.drain()

    assert outcome.status == "expired"
    assert outcome.response == "Your subscription has expired. Please renew to continue."
    assert fake_openai.calls == 0
    assert (await ctx.store.get("acme")).status == ProjectStatus.EXPIRED
    assert await notification_types("acme") == [NotificationType.EXPIRED]

    swept = await run_maintenance_sweep(ctx.store, ctx.notifications, ctx.settings)
    assert swept.expired == 0
    assert await notification_types("acme") == [NotificationType.EXPIRED]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, expected",
    [
        (ProjectStatus.SUSPENDED, "suspended"),
        (ProjectStatus.DELETED, "deleted"),
        (ProjectStatus.EXPIRED, "expired"),
    ],
)
async def test_blocked_statuses_skip_the_llm(ctx, seed, fake_openai, status, expected):
    await seed(status=status)

    outcome = await ctx.chat.handle_message("acme", "hello")

    assert outcome.status == expected
    assert outcome.usage is None
    assert fake_openai.calls == 0


@pytest.mark.asyncio
async def test_unknown_project(ctx):
    with pytest.raises(ProjectNotFound):
        await ctx.chat.handle_message("ghost", "hello")


@pytest.mark.asyncio
async def test_knowledge_text_is_sent_as_context(ctx, seed, fake_openai):
    await seed(knowledge_text="Refunds take 14 days.")

    await ctx.chat.handle_message("acme", "How long do refunds take?")

    body = fake_openai.requests[0].content.decode()
    assert "Refunds take 14 days." in body
    assert "How long do refunds take?" in body


@pytest.mark.asyncio
async def test_rate_message(ctx, seed):
    await seed()
    outcome = await ctx.chat.handle_message("acme", "hello")

    message_id = uuid.UUID(outcome.message_id)
    assert await ctx.chat_log.rate("acme", message_id, "positive", "great", utcnow()) is True
    assert await ctx.chat_log.rate("other", message_id, "positive", "", utcnow()) is False
    with pytest.raises(InvalidRequest):
        await ctx.chat_log.rate("acme", message_id, "meh", "", utcnow())

    history = await ctx.chat_log.history("acme")
    assert history[0].rating == "positive"
