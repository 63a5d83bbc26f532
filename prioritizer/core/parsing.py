"""Helpers for turning raw reasoning-service text into JSON objects."""

from __future__ import annotations

import json
import re
from typing import Any, Union

_FENCE = re.compile(r"```(?:json)?\s*|\s*```", re.IGNORECASE)


def extract_json_object(raw: Union[str, bytes, dict[str, Any]]) -> dict[str, Any]:
    """
    Decode the first JSON object in ``raw``.

    Accepts an already-decoded dict, bare JSON, or JSON wrapped in a
    markdown code fence or surrounded by stray prose.

    Raises:
        ValueError: If no JSON object can be decoded.
    """
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not isinstance(raw, str):
        raise ValueError(f"expected text or dict, got {type(raw).__name__}")

    clean_text = _FENCE.sub("", raw).strip()
    if not clean_text:
        raise ValueError("empty response")

    try:
        data = json.loads(clean_text)
    except json.JSONDecodeError:
        start = clean_text.find("{")
        end = clean_text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object found in response") from None
        try:
            data = json.loads(clean_text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid JSON: {e.msg} at position {e.pos}") from None

    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def truncate(text: str, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters with an ellipsis."""
    if not text:
        return ""
    return text if len(text) <= max_length else f"{text[:max_length - 3]}..."


def first_words(text: str, limit: int = 20) -> str:
    """First ``limit`` whitespace-separated words of ``text``."""
    return " ".join(text.split()[:limit])
