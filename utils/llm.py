"""
OpenAI-compatible LLM helpers — provider strategies, fallback chain and
response parsing shared by the AI actions.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol, Sequence

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

import config

log = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."
CREDITS_EXHAUSTED_MESSAGE = "AI credits exhausted. Please add more credits."
NO_PROVIDER_MESSAGE = "No AI API key configured or all AI calls failed"

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


class ProviderError(Exception):
    """An upstream LLM call failed; the message is safe to show to users."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.message = message
        self.provider = provider


class CompletionProvider(Protocol):
    name: str

    async def complete(self, system: str, user: str, model: str | None = None) -> str: ...


@dataclass
class Provider:
    """One OpenAI-compatible chat-completions endpoint."""
    name: str
    base_url: str
    api_key: str
    model: str
    accepts_model: bool = True  # False → always use self.model

    async def complete(self, system: str, user: str, model: str | None = None) -> str:
        model = (model if self.accepts_model else None) or self.model
        kwargs: dict = {
            "model": model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": config.AI_TEMPERATURE,
        }
        if model.startswith("openai/"):
            kwargs["max_completion_tokens"] = config.AI_MAX_TOKENS
        else:
            kwargs["max_tokens"] = config.AI_MAX_TOKENS

        log.info("Using %s with %s", self.name, model)
        client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)
        try:
            resp = await client.chat.completions.create(**kwargs)
        except RateLimitError as e:
            log.warning("%s rate limited: %s", self.name, e)
            raise ProviderError(RATE_LIMIT_MESSAGE, self.name) from e
        except APIStatusError as e:
            log.error("%s API error: %s %s", self.name, e.status_code, e.message)
            if e.status_code == 402:
                raise ProviderError(CREDITS_EXHAUSTED_MESSAGE, self.name) from e
            raise ProviderError(f"{self.name} error: {e.status_code}", self.name) from e
        except APIConnectionError as e:
            log.error("%s unreachable: %s", self.name, e)
            raise ProviderError(f"{self.name} unreachable", self.name) from e
        finally:
            await client.close()

        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise ProviderError(f"{self.name} returned an empty response", self.name)
        return content


def primary_provider() -> Provider | None:
    """Fast code-generation provider (Groq), if its key is configured."""
    if not config.GROQ_API_KEY:
        return None
    return Provider(
        name="Groq",
        base_url=config.GROQ_BASE_URL,
        api_key=config.GROQ_API_KEY,
        model=config.GROQ_MODEL,
        accepts_model=False,
    )


def general_provider() -> Provider | None:
    """General-purpose gateway provider, if its key is configured."""
    if not config.AI_GATEWAY_API_KEY:
        return None
    return Provider(
        name="AI Gateway",
        base_url=config.AI_GATEWAY_BASE_URL,
        api_key=config.AI_GATEWAY_API_KEY,
        model=config.AI_GATEWAY_MODEL,
    )


def select_providers(use_primary: bool) -> list[Provider]:
    """Ordered fallback chain; providers without a key are skipped."""
    chain = [primary_provider(), general_provider()] if use_primary else [general_provider()]
    return [p for p in chain if p is not None]


def resolve_model(model: str | None) -> str | None:
    """Map a dashboard alias to a gateway model id; ids with a slash pass through."""
    if not model:
        return None
    if model in config.MODEL_ALIASES:
        return config.MODEL_ALIASES[model]
    if "/" in model:
        return model
    log.warning("Unknown model %r, using provider default", model)
    return None


async def complete_with_fallback(
    providers: Sequence[CompletionProvider],
    system: str,
    user: str,
    model: str | None = None,
) -> tuple[str, str]:
    """Try each provider in order until one answers.

    Returns (text, provider name). Raises the last ProviderError when every
    provider failed, or a generic one when the chain is empty.
    """
    last_error: ProviderError | None = None
    for i, provider in enumerate(providers):
        try:
            text = await provider.complete(system, user, model)
            label = provider.name if i == 0 else f"{provider.name} (fallback)"
            return text, label
        except ProviderError as e:
            last_error = e
            if i + 1 < len(providers):
                log.warning("%s failed, falling back to %s: %s", provider.name, providers[i + 1].name, e)
    if last_error is not None:
        raise last_error
    raise ProviderError(NO_PROVIDER_MESSAGE)


def parse_json_response(raw: str) -> dict:
    """Parse an LLM reply as a JSON object.

    A fenced ```json block is preferred over the bare text. Anything that
    does not parse to an object comes back as {"rawResponse": raw}.
    """
    match = _FENCED_JSON_RE.search(raw)
    candidate = match.group(1).strip() if match else raw
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        log.info("LLM response is not JSON, returning raw text (%d chars)", len(raw))
        return {"rawResponse": raw}
    if not isinstance(parsed, dict):
        return {"rawResponse": raw}
    return parsed
