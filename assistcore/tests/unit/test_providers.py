from __future__ import annotations

import httpx
import pytest

from assistcore.core.config import EMBED_DIM, get_settings
from assistcore.core.errors import (
    EmbeddingUnavailableError,
    ProviderConfigError,
    ReasoningServiceUnavailableError,
)
from assistcore.providers.embeddings.factory import get_embedding_provider, reset_embedding_providers
from assistcore.providers.embeddings.hashing import HashingEmbeddingProvider, embed_text
from assistcore.providers.embeddings.openai_embed import OpenAIEmbeddingProvider
from assistcore.providers.llm.factory import get_llm_provider, reset_llm_providers
from assistcore.providers.llm.fake import FakeLLMProvider
from assistcore.providers.llm.openai_chat import OpenAIChatProvider
from assistcore.services.telemetry import external_call_stats


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _with_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    get_settings.cache_clear()


def test_hashing_embedding_is_deterministic_and_full_width() -> None:
    first = embed_text("Quarterly planning meeting")
    second = embed_text("quarterly planning MEETING")

    assert len(first) == EMBED_DIM
    assert first == second


def test_hashing_embedding_handles_empty_text() -> None:
    assert embed_text("   ") == [0.0] * EMBED_DIM


@pytest.mark.asyncio
async def test_hashing_provider_embeds_korean_tokens() -> None:
    vector = await HashingEmbeddingProvider().embed("면접 준비")

    assert len(vector) == EMBED_DIM
    assert any(value != 0.0 for value in vector)


def test_factories_select_configured_providers(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    monkeypatch.setenv("EMBEDDING_PROVIDER", "hashing")
    get_settings.cache_clear()
    reset_llm_providers()
    reset_embedding_providers()

    assert isinstance(get_llm_provider(), FakeLLMProvider)
    assert get_llm_provider() is get_llm_provider()
    assert isinstance(get_embedding_provider(), HashingEmbeddingProvider)


def test_unknown_provider_is_config_error(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "nope")
    get_settings.cache_clear()
    reset_llm_providers()

    with pytest.raises(ProviderConfigError):
        get_llm_provider()


@pytest.mark.asyncio
async def test_openai_embeddings_parse_vector(monkeypatch) -> None:
    _with_key(monkeypatch)
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"data": [{"embedding": [0.1] * EMBED_DIM}]})

    provider = OpenAIEmbeddingProvider(client=_client(handler))
    vector = await provider.embed("hello")

    assert len(vector) == EMBED_DIM
    assert seen["url"].endswith("/embeddings")
    assert seen["auth"] == "Bearer sk-test"
    assert external_call_stats(60)["embeddings.openai"]["failures"] == 0


@pytest.mark.asyncio
async def test_openai_embeddings_server_error_is_unavailable(monkeypatch) -> None:
    _with_key(monkeypatch)
    provider = OpenAIEmbeddingProvider(client=_client(lambda request: httpx.Response(500)))

    with pytest.raises(EmbeddingUnavailableError):
        await provider.embed("hello")


@pytest.mark.asyncio
async def test_openai_embeddings_auth_error_is_config_error(monkeypatch) -> None:
    _with_key(monkeypatch)
    provider = OpenAIEmbeddingProvider(client=_client(lambda request: httpx.Response(401)))

    with pytest.raises(ProviderConfigError):
        await provider.embed("hello")


@pytest.mark.asyncio
async def test_openai_embeddings_require_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    provider = OpenAIEmbeddingProvider(client=_client(lambda request: httpx.Response(200)))

    with pytest.raises(ProviderConfigError):
        await provider.embed("hello")


@pytest.mark.asyncio
async def test_openai_chat_returns_message_content(monkeypatch) -> None:
    _with_key(monkeypatch)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"insights": []}'}}]})

    provider = OpenAIChatProvider(client=_client(handler))

    assert await provider.complete([{"role": "user", "content": "hi"}], temperature=0.3) == '{"insights": []}'


@pytest.mark.asyncio
async def test_openai_chat_transport_error_is_unavailable(monkeypatch) -> None:
    _with_key(monkeypatch)

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    provider = OpenAIChatProvider(client=_client(handler))

    with pytest.raises(ReasoningServiceUnavailableError):
        await provider.complete([{"role": "user", "content": "hi"}])
    assert external_call_stats(60)["llm.openai"]["failures"] == 1


@pytest.mark.asyncio
async def test_openai_chat_unexpected_payload_is_unavailable(monkeypatch) -> None:
    _with_key(monkeypatch)
    provider = OpenAIChatProvider(client=_client(lambda request: httpx.Response(200, json={"oops": True})))

    with pytest.raises(ReasoningServiceUnavailableError):
        await provider.complete([{"role": "user", "content": "hi"}])
