"""
OpenAI-compatible LLM client for widget chat replies.

Uses the /chat/completions API via httpx. The project's knowledge text is
sent as system context; the end-user message is the user turn.

Configuration (from Settings):
  OPENAI_API_KEY      server-side only, never exposed to clients
  LLM_BASE_URL        any OpenAI-compatible endpoint
  LLM_MODEL           default model when the project does not set one
  LLM_TIMEOUT_SECONDS independent of the store timeout

Failure taxonomy (provider text is logged truncated, never returned):
  429                  → LLMRateLimited
  401 / 403            → LLMAuthFailed
  httpx timeout        → LLMTimeout
  anything else        → LLMUnknownError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from chatdesk.core.config import Settings

logger = logging.getLogger(__name__)

# ── System prompt ───────────────────────────────────────────
SYSTEM_PROMPT = """\
You are a helpful assistant. Use the following document content to answer \
user questions accurately:

Document Content:
{context}

Instructions:
- Answer questions based on the provided document content
- If the question cannot be answered from the document, say so politely
- Be concise and helpful
- Cite relevant parts of the document when appropriate\
"""


# ── Errors ──────────────────────────────────────────────────
class LLMError(Exception):
    """Base class for upstream LLM failures."""

    kind = "unknown"


class LLMRateLimited(LLMError):
    kind = "rate_limited"


class LLMAuthFailed(LLMError):
    kind = "auth"


class LLMTimeout(LLMError):
    kind = "timeout"


class LLMUnknownError(LLMError):
    kind = "unknown"


# Apologetic replies shown to the end user, keyed by LLMError.kind.
USER_MESSAGES: dict[str, str] = {
    "rate_limited": "I'm experiencing high demand right now. Please try again in a moment.",
    "auth": "I'm having authentication issues. Please contact support.",
    "timeout": "I'm taking longer than usual to respond. Please try a shorter question.",
    "unknown": "I'm having trouble answering just now. Please try again later.",
}


@dataclass(frozen=True, slots=True)
class Completion:
    text: str
    tokens_used: int
    prompt_tokens: int
    completion_tokens: int
    model: str


class LLMClient:
    """Thin async wrapper around one OpenAI-compatible endpoint."""

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.LLM_BASE_URL,
            timeout=settings.LLM_TIMEOUT_SECONDS,
            transport=transport,
        )

    @property
    def default_model(self) -> str:
        return self._settings.LLM_MODEL

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(
        self,
        prompt: str,
        context: str,
        model: str | None = None,
    ) -> Completion:
        """
        Ask the model to answer `prompt` grounded in `context`.

        Returns:
            Completion with the reply text and provider-reported token usage.

        Raises:
            LLMError subclass on any failure.
        """
        if not self._settings.OPENAI_API_KEY:
            raise LLMAuthFailed("OPENAI_API_KEY is not configured")

        model = model or self.default_model
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT.format(context=context)},
                {"role": "user", "content": prompt},
            ],
            "temperature": self._settings.LLM_TEMPERATURE,
            "max_tokens": self._settings.LLM_MAX_TOKENS,
        }
        headers = {
            "Authorization": f"Bearer {self._settings.OPENAI_API_KEY}",
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post("/chat/completions", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("LLM request timed out (model=%s)", model)
            raise LLMTimeout("LLM request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("LLM transport error: %s", type(exc).__name__)
            raise LLMUnknownError("LLM transport error") from exc

        if response.status_code != 200:
            logger.error(
                "LLM API error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            if response.status_code == 429:
                raise LLMRateLimited("LLM rate limit exceeded")
            if response.status_code in (401, 403):
                raise LLMAuthFailed("LLM authentication failed")
            raise LLMUnknownError(f"LLM returned status {response.status_code}")

        # ── Parse the completion ────────────────────────────
        try:
            data = response.json()
            text = data["choices"][0]["message"]["content"] or ""
            usage = data.get("usage") or {}
            prompt_tokens = int(usage.get("prompt_tokens", 0))
            completion_tokens = int(usage.get("completion_tokens", 0))
            total_tokens = int(usage.get("total_tokens", prompt_tokens + completion_tokens))
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.error("Failed to parse LLM response: %s", exc)
            raise LLMUnknownError("Could not parse LLM response") from exc

        return Completion(
            text=text.strip(),
            tokens_used=total_tokens,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            model=data.get("model", model),
        )
