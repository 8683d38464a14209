from __future__ import annotations

import logging
import time

import httpx

from assistcore.core.config import get_settings
from assistcore.core.errors import ProviderConfigError, ReasoningServiceUnavailableError
from assistcore.services.telemetry import record_external_call

logger = logging.getLogger(__name__)

_INTEGRATION = "llm.openai"


class OpenAIChatProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        timeout_s = self._settings.ext_call_timeout_ms / 1000.0
        self._client = httpx.AsyncClient(timeout=timeout_s)
        return self._client

    async def complete(self, messages: list[dict], *, temperature: float | None = None) -> str:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the OpenAI reasoning provider")

        payload: dict = {"model": self._settings.openai_chat_model, "messages": messages}
        if temperature is not None:
            payload["temperature"] = temperature
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}"}

        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            self._record(start, success=False)
            logger.warning("openai_chat_transport_error error=%s", type(exc).__name__)
            raise ReasoningServiceUnavailableError("OpenAI chat request failed.") from exc

        if response.status_code in {401, 403}:
            self._record(start, success=False)
            raise ProviderConfigError("OpenAI auth error: check OPENAI_API_KEY.")
        if response.status_code >= 400:
            self._record(start, success=False)
            logger.warning("openai_chat_http_error status=%s", response.status_code)
            raise ReasoningServiceUnavailableError(f"OpenAI chat error: {response.status_code}")

        try:
            body = response.json()
            content = body["choices"][0]["message"].get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as exc:
            self._record(start, success=False)
            raise ReasoningServiceUnavailableError("OpenAI chat returned an unexpected payload.") from exc

        self._record(start, success=True)
        return content

    def _record(self, start: float, *, success: bool) -> None:
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
