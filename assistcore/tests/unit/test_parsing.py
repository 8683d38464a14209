from __future__ import annotations

import pytest
from pydantic import BaseModel

from assistcore.core.errors import MalformedUpstreamResponseError
from assistcore.services.parsing import clean_structured_text, extract_json_object, parse_structured


class _Payload(BaseModel):
    name: str
    score: float


def test_parse_strips_code_fences() -> None:
    text = '```json\n{"name": "alpha", "score": 0.5}\n```'

    parsed = parse_structured(text, _Payload)

    assert parsed == _Payload(name="alpha", score=0.5)


def test_parse_ignores_prose_around_object() -> None:
    text = 'Sure! Here it is: {"name": "beta", "score": 1} Hope that helps.'

    assert parse_structured(text, _Payload).name == "beta"


def test_control_characters_are_removed_but_newlines_kept() -> None:
    cleaned = clean_structured_text('{"a":\x00 1,\x1b\n\t"b": 2}')

    assert "\x00" not in cleaned
    assert "\x1b" not in cleaned
    assert "\n\t" in cleaned


def test_missing_object_is_malformed() -> None:
    with pytest.raises(MalformedUpstreamResponseError):
        extract_json_object("no json here")


def test_invalid_json_is_malformed() -> None:
    with pytest.raises(MalformedUpstreamResponseError):
        parse_structured('{"name": "x", "score": }', _Payload)


def test_schema_mismatch_is_malformed() -> None:
    with pytest.raises(MalformedUpstreamResponseError):
        parse_structured('{"name": "x"}', _Payload)
