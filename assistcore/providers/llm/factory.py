from __future__ import annotations

from assistcore.core.config import get_settings
from assistcore.core.errors import ProviderConfigError
from assistcore.providers.llm.base import LLMProvider
from assistcore.providers.llm.fake import FakeLLMProvider
from assistcore.providers.llm.gemini_vertex import GeminiVertexProvider
from assistcore.providers.llm.openai_chat import OpenAIChatProvider


_providers: dict[str, LLMProvider] = {}


def get_llm_provider() -> LLMProvider:
    # Cache one provider per name so HTTP clients are pooled across requests.
    settings = get_settings()
    name = (settings.llm_provider or "openai").lower()
    cached = _providers.get(name)
    if cached is not None:
        return cached

    if name == "fake":
        provider: LLMProvider = FakeLLMProvider(settings.fake_llm_response)
    elif name == "openai":
        provider = OpenAIChatProvider()
    elif name == "vertex":
        provider = GeminiVertexProvider()
    else:
        raise ProviderConfigError(f"Unsupported LLM provider: {name}")
    _providers[name] = provider
    return provider


def reset_llm_providers() -> None:
    _providers.clear()
