import json

import httpx
import pytest

from chatdesk.services.llm_client import (
    LLMAuthFailed,
    LLMClient,
    LLMRateLimited,
    LLMTimeout,
    LLMUnknownError,
)


@pytest.mark.asyncio
async def test_completion_is_parsed(settings, fake_openai):
    client = LLMClient(settings, transport=fake_openai.transport())

    completion = await client.complete("Hi", "Opening hours: 9 to 5.", "gpt-4o-mini")
    await client.aclose()

    assert completion.text == "We are open 9 to 5."
    assert completion.tokens_used == 100
    assert completion.prompt_tokens == 60
    assert completion.completion_tokens == 40
    assert completion.model == "gpt-4o-mini"


@pytest.mark.asyncio
async def test_request_payload(settings, fake_openai):
    client = LLMClient(settings, transport=fake_openai.transport())
    await client.complete("Hi", "Opening hours: 9 to 5.")
    await client.aclose()

    request = fake_openai.requests[0]
    payload = json.loads(request.content)

    assert request.url.path.endswith("/chat/completions")
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert payload["model"] == "gpt-4o"
    assert payload["max_tokens"] == 500
    assert payload["temperature"] == 0.7
    assert payload["messages"][0]["role"] == "system"
    assert "Opening hours: 9 to 5." in payload["messages"][0]["content"]
    assert payload["messages"][1] == {"role": "user", "content": "Hi"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status_code, error",
    [
        (429, LLMRateLimited),
        (401, LLMAuthFailed),
        (403, LLMAuthFailed),
        (500, LLMUnknownError),
        (400, LLMUnknownError),
    ],
)
async def test_status_codes_map_to_errors(settings, fake_openai, status_code, error):
    fake_openai.status_code = status_code
    client = LLMClient(settings, transport=fake_openai.transport())

    with pytest.raises(error):
        await client.complete("Hi", "")
    await client.aclose()


@pytest.mark.asyncio
async def test_timeout(settings, fake_openai):
    fake_openai.raise_timeout = True
    client = LLMClient(settings, transport=fake_openai.transport())

    with pytest.raises(LLMTimeout) as exc_info:
        await client.complete("Hi", "")
    await client.aclose()

    assert exc_info.value.kind == "timeout"


@pytest.mark.asyncio
async def test_missing_api_key_fails_without_a_request(settings, fake_openai):
    client = LLMClient(settings.model_copy(update={"OPENAI_API_KEY": ""}), transport=fake_openai.transport())

    with pytest.raises(LLMAuthFailed):
        await client.complete("Hi", "")
    await client.aclose()

    assert fake_openai.calls == 0


@pytest.mark.asyncio
async def test_malformed_body(settings):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    client = LLMClient(settings, transport=transport)

    with pytest.raises(LLMUnknownError):
        await client.complete("Hi", "")
    await client.aclose()
