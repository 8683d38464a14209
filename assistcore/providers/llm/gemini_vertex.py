from __future__ import annotations

import logging
import time

from assistcore.core.config import get_settings
from assistcore.core.errors import ProviderConfigError, ReasoningServiceUnavailableError
from assistcore.services.telemetry import record_external_call

logger = logging.getLogger(__name__)

_INTEGRATION = "llm.vertex"
# Vertex names the assistant side of a chat "model".
_ROLE_MAP = {"user": "user", "assistant": "model"}


class GeminiVertexProvider:
    def __init__(self) -> None:
        self._settings = get_settings()
        self._initialised = False

    def _config(self) -> tuple[str, str, str]:
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        model = self._settings.gemini_model
        missing = [
            name
            for name, value in (
                ("GOOGLE_CLOUD_PROJECT", project),
                ("GOOGLE_CLOUD_LOCATION", location),
                ("GEMINI_MODEL", model),
            )
            if not value
        ]
        if missing:
            raise ProviderConfigError(f"Vertex config missing: set {', '.join(missing)}.")
        return project, location, model

    def _model(self, system: list[str]):
        # The SDK ships in the optional "vertex" extra.
        try:
            import vertexai
            from vertexai.generative_models import GenerativeModel
        except ImportError as exc:
            raise ProviderConfigError("Vertex AI SDK not available. Install assistcore[vertex].") from exc

        project, location, model_name = self._config()
        if not self._initialised:
            vertexai.init(project=project, location=location)
            self._initialised = True
        return GenerativeModel(model_name, system_instruction=system or None)

    @staticmethod
    def _contents(messages: list[dict]) -> tuple[list[str], list]:
        from vertexai.generative_models import Content, Part

        system: list[str] = []
        contents = []
        for message in messages:
            role = message.get("role", "user")
            text = message.get("content", "")
            if role == "system":
                system.append(text)
                continue
            contents.append(Content(role=_ROLE_MAP.get(role, "user"), parts=[Part.from_text(text)]))
        return system, contents

    async def complete(self, messages: list[dict], *, temperature: float | None = None) -> str:
        self._config()
        start = time.monotonic()
        try:
            system, contents = self._contents(messages)
            model = self._model(system)
            config = {"temperature": temperature} if temperature is not None else None
            response = await model.generate_content_async(contents, generation_config=config)
            text = response.text or ""
        except ProviderConfigError:
            raise
        except ImportError as exc:
            raise ProviderConfigError("Vertex AI SDK not available. Install assistcore[vertex].") from exc
        except Exception as exc:
            self._record(start, success=False)
            logger.error("vertex_generate_error model=%s error=%s", self._settings.gemini_model, type(exc).__name__)
            raise ReasoningServiceUnavailableError("Vertex AI request failed.") from exc
        self._record(start, success=True)
        return text

    def _record(self, start: float, *, success: bool) -> None:
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
