"""Text helpers shared by prompt builders and parsers."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Optional

_JSON_FENCE = re.compile(r"```(?:json)?\s*\n([\s\S]*?)\n\s*```", re.IGNORECASE)


def truncate(value: Optional[str], max_length: int, marker: str = "...") -> str:
    """Cut ``value`` to ``max_length`` characters and append ``marker`` when cut."""
    if not value:
        return ""
    if len(value) <= max_length:
        return value
    return value[:max_length] + marker


def extract_json_block(text: str) -> str:
    """Pull a JSON object out of an LLM reply.

    Prefers a fenced ```json block, otherwise takes everything from the first
    ``{`` to the last ``}``. Returns the stripped input when neither is found.
    """
    if not text:
        return ""
    match = _JSON_FENCE.search(text)
    if match:
        return match.group(1).strip()
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start:end + 1]
    return text.strip()


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Best-effort parse of a JSON object embedded in ``text``; None on failure."""
    candidate = extract_json_block(text)
    try:
        data = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return data if isinstance(data, dict) else None
