"""Tests for the provider chain and LLM response parsing."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

import config
from utils import llm
from utils.llm import (
    CREDITS_EXHAUSTED_MESSAGE,
    NO_PROVIDER_MESSAGE,
    RATE_LIMIT_MESSAGE,
    Provider,
    ProviderError,
    complete_with_fallback,
    parse_json_response,
    resolve_model,
    select_providers,
)


class FakeProvider:
    def __init__(self, name, reply=None, error=None):
        self.name = name
        self.reply = reply
        self.error = error
        self.calls = []

    async def complete(self, system, user, model=None):
        self.calls.append((system, user, model))
        if self.error:
            raise ProviderError(self.error, self.name)
        return self.reply


def status_error(cls, status):
    request = httpx.Request("POST", "https://llm.test/v1/chat/completions")
    return cls("upstream said no", response=httpx.Response(status, request=request), body=None)


@pytest.fixture
def openai_client(monkeypatch):
    """Replace AsyncOpenAI with a mock; returns the mocked client instance."""
    instance = MagicMock()
    instance.chat.completions.create = AsyncMock()
    instance.close = AsyncMock()
    monkeypatch.setattr(llm, "AsyncOpenAI", MagicMock(return_value=instance))
    return instance


def completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class TestParseJsonResponse:
    def test_fenced_block_preferred(self):
        raw = 'Sure!\n```json\n{"summary": "ok"}\n```\nanything else'
        assert parse_json_response(raw) == {"summary": "ok"}

    def test_bare_json(self):
        assert parse_json_response('{"passed": true}') == {"passed": True}

    def test_unparseable_text_is_kept(self):
        assert parse_json_response("just words") == {"rawResponse": "just words"}

    def test_non_object_is_kept_raw(self):
        assert parse_json_response("[1, 2]") == {"rawResponse": "[1, 2]"}


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        a, b = FakeProvider("A", reply="one"), FakeProvider("B", reply="two")
        assert await complete_with_fallback([a, b], "s", "u") == ("one", "A")
        assert b.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_on_failure(self):
        a, b = FakeProvider("A", error="A error: 500"), FakeProvider("B", reply="two")
        assert await complete_with_fallback([a, b], "s", "u", "m") == ("two", "B (fallback)")
        assert b.calls == [("s", "u", "m")]

    @pytest.mark.asyncio
    async def test_last_error_surfaces(self):
        chain = [FakeProvider("A", error="first"), FakeProvider("B", error=RATE_LIMIT_MESSAGE)]
        with pytest.raises(ProviderError, match="Rate limit exceeded"):
            await complete_with_fallback(chain, "s", "u")

    @pytest.mark.asyncio
    async def test_empty_chain(self):
        with pytest.raises(ProviderError) as exc:
            await complete_with_fallback([], "s", "u")
        assert exc.value.message == NO_PROVIDER_MESSAGE


class TestProvider:
    @pytest.mark.asyncio
    async def test_completion(self, openai_client):
        openai_client.chat.completions.create.return_value = completion("hello")
        provider = Provider("Gateway", "https://llm.test/v1", "key", "google/gemini-2.5-flash")

        assert await provider.complete("sys", "usr", model="google/gemini-2.5-pro") == "hello"

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "google/gemini-2.5-pro"
        assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
        assert kwargs["max_tokens"] == config.AI_MAX_TOKENS
        openai_client.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_fixed_model_provider_ignores_requested_model(self, openai_client):
        openai_client.chat.completions.create.return_value = completion("ok")
        provider = Provider("Groq", "https://llm.test/v1", "key", "openai/gpt-oss-120b", accepts_model=False)

        await provider.complete("s", "u", model="google/gemini-2.5-pro")

        kwargs = openai_client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "openai/gpt-oss-120b"
        assert kwargs["max_completion_tokens"] == config.AI_MAX_TOKENS
        assert "max_tokens" not in kwargs

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error, message", [
        (status_error(openai.RateLimitError, 429), RATE_LIMIT_MESSAGE),
        (status_error(openai.APIStatusError, 402), CREDITS_EXHAUSTED_MESSAGE),
        (status_error(openai.APIStatusError, 503), "Gateway error: 503"),
    ])
    async def test_error_mapping(self, openai_client, error, message):
        openai_client.chat.completions.create.side_effect = error
        provider = Provider("Gateway", "https://llm.test/v1", "key", "m")

        with pytest.raises(ProviderError) as exc:
            await provider.complete("s", "u")
        assert exc.value.message == message
        openai_client.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_empty_reply(self, openai_client):
        openai_client.chat.completions.create.return_value = completion("")
        with pytest.raises(ProviderError, match="empty response"):
            await Provider("Gateway", "https://llm.test/v1", "key", "m").complete("s", "u")


class TestProviderSelection:
    def test_primary_chain_falls_back_to_gateway(self, monkeypatch):
        monkeypatch.setattr(config, "GROQ_API_KEY", "g")
        monkeypatch.setattr(config, "AI_GATEWAY_API_KEY", "a")
        assert [p.name for p in select_providers(True)] == ["Groq", "AI Gateway"]
        assert [p.name for p in select_providers(False)] == ["AI Gateway"]

    def test_unconfigured_providers_are_skipped(self, monkeypatch):
        monkeypatch.setattr(config, "GROQ_API_KEY", "")
        monkeypatch.setattr(config, "AI_GATEWAY_API_KEY", "a")
        assert [p.name for p in select_providers(True)] == ["AI Gateway"]
        monkeypatch.setattr(config, "AI_GATEWAY_API_KEY", "")
        assert select_providers(True) == []

    def test_resolve_model(self, monkeypatch):
        monkeypatch.setattr(config, "MODEL_ALIASES", {"gemini": "google/gemini-2.5-flash"})
        assert resolve_model("gemini") == "google/gemini-2.5-flash"
        assert resolve_model("vendor/model-x") == "vendor/model-x"
        assert resolve_model("mystery") is None
        assert resolve_model(None) is None
