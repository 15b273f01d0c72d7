"""Tests for structured AI response parsing."""

from __future__ import annotations

import pytest

from cascadedocs.errors import InvalidResponse
from cascadedocs.llm.responses import parse_json_object, strip_code_fence


def test_strip_code_fence_handles_json_fences() -> None:
    assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}```') == '{"a": 1}'
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'


def test_parse_json_object_returns_payload() -> None:
    assert parse_json_object('{"micro": null, "standard": "s"}', required=("micro",)) == {
        "micro": None,
        "standard": "s",
    }


@pytest.mark.parametrize(
    "text",
    ["", "   ", "not json", "[1, 2]", '{"standard": "s"}'],
)
def test_parse_json_object_rejects_bad_payloads(text: str) -> None:
    with pytest.raises(InvalidResponse):
        parse_json_object(text, required=("micro",))
