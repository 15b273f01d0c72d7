"""Parsing of structured (JSON) AI responses."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable

from ..errors import InvalidResponse

_FENCE = re.compile(r"\A\s*```(?:json)?[ \t]*\n(.*?)\n?```\s*\Z", re.DOTALL)


def strip_code_fence(text: str) -> str:
    match = _FENCE.match(text)
    return match.group(1) if match else text.strip()


def parse_json_object(text: str, *, required: Iterable[str] = ()) -> Dict[str, Any]:
    """Decode an AI response that must be a JSON object containing `required` keys."""
    if not text or not text.strip():
        raise InvalidResponse("AI returned an empty response")
    body = strip_code_fence(text)
    try:
        payload = json.loads(body)
    except json.JSONDecodeError as exc:
        raise InvalidResponse(f"AI response is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise InvalidResponse("AI response must be a JSON object")
    missing = [key for key in required if key not in payload]
    if missing:
        raise InvalidResponse(f"AI response is missing required field(s): {', '.join(missing)}")
    return payload


__all__ = ["parse_json_object", "strip_code_fence"]
