from __future__ import annotations

import json
import logging
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from assistcore.core.errors import MalformedUpstreamResponseError


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*")
# Keep newlines and tabs; every other C0 control plus DEL is noise from the model.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_structured_text(text: str) -> str:
    # Strip Markdown fences and control characters around a JSON payload.
    cleaned = _FENCE_RE.sub("", text or "")
    cleaned = _CONTROL_RE.sub("", cleaned)
    return cleaned.strip()


def extract_json_object(text: str) -> str:
    cleaned = clean_structured_text(text)
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        raise MalformedUpstreamResponseError("No JSON object in reasoning response")
    return cleaned[start : end + 1]


def parse_structured(text: str, model: type[ModelT]) -> ModelT:
    # Turn reasoning-service text into a typed value or raise; never guess at partial structure.
    try:
        payload = json.loads(extract_json_object(text))
    except json.JSONDecodeError as exc:
        logger.warning("upstream_json_invalid model=%s error=%s", model.__name__, exc)
        raise MalformedUpstreamResponseError("Reasoning response is not valid JSON") from exc
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        logger.warning("upstream_schema_invalid model=%s errors=%s", model.__name__, exc.error_count())
        raise MalformedUpstreamResponseError("Reasoning response does not match the expected shape") from exc
