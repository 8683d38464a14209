from __future__ import annotations

import logging
import time

import httpx

from assistcore.core.config import get_settings
from assistcore.core.errors import EmbeddingUnavailableError, ProviderConfigError
from assistcore.services.telemetry import record_external_call

logger = logging.getLogger(__name__)

_INTEGRATION = "embeddings.openai"


class OpenAIEmbeddingProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def embed(self, text: str) -> list[float]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for OpenAI embeddings")

        payload = {
            "model": self._settings.openai_embedding_model,
            "input": text,
            "encoding_format": "float",
        }
        url = f"{self._settings.openai_base_url.rstrip('/')}/embeddings"
        headers = {"Authorization": f"Bearer {api_key}"}

        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            self._record(start, success=False)
            logger.warning("openai_embed_transport_error error=%s", type(exc).__name__)
            raise EmbeddingUnavailableError("OpenAI embedding request failed.") from exc

        if response.status_code in {401, 403}:
            self._record(start, success=False)
            raise ProviderConfigError("OpenAI auth error: check OPENAI_API_KEY.")
        if response.status_code >= 400:
            self._record(start, success=False)
            logger.warning("openai_embed_http_error status=%s", response.status_code)
            raise EmbeddingUnavailableError(f"OpenAI embedding error: {response.status_code}")

        try:
            vector = [float(v) for v in response.json()["data"][0]["embedding"]]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            self._record(start, success=False)
            raise EmbeddingUnavailableError("OpenAI embedding returned an unexpected payload.") from exc

        self._record(start, success=True)
        return vector

    def _record(self, start: float, *, success: bool) -> None:
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
