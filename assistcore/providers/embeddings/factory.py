from __future__ import annotations

from assistcore.core.config import get_settings
from assistcore.core.errors import ProviderConfigError
from assistcore.providers.embeddings.base import EmbeddingProvider
from assistcore.providers.embeddings.hashing import HashingEmbeddingProvider
from assistcore.providers.embeddings.openai_embed import OpenAIEmbeddingProvider


_providers: dict[str, EmbeddingProvider] = {}


def get_embedding_provider() -> EmbeddingProvider:
    settings = get_settings()
    name = (settings.embedding_provider or "openai").lower()
    cached = _providers.get(name)
    if cached is not None:
        return cached

    if name == "hashing":
        provider: EmbeddingProvider = HashingEmbeddingProvider()
    elif name == "openai":
        provider = OpenAIEmbeddingProvider()
    else:
        raise ProviderConfigError(f"Unsupported embedding provider: {name}")
    _providers[name] = provider
    return provider


def reset_embedding_providers() -> None:
    _providers.clear()
