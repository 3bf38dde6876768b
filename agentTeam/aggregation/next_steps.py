"""Extract recommended next steps from a synthesis summary.

Two formats are recognised, in order of preference:

1. Explicit markers: ``[ACTION:description]``
2. Markdown list items under a "Next Steps" / "Recommended Next Steps" heading
"""

from __future__ import annotations

import re
from typing import List, Optional

ACTION_MARKER_RE = re.compile(r"\[ACTION:([^\]]+)\]", re.IGNORECASE)
NEXT_STEPS_SECTION_RE = re.compile(
    r"#{1,4}\s*(?:Recommended\s+)?Next\s+Steps[^\n]*\n((?:[ \t]*[-*][ \t]+.+\n?)+)",
    re.IGNORECASE,
)
LIST_ITEM_RE = re.compile(r"^\s*[-*]\s+(.+)$", re.MULTILINE)


def _append_unique(items: List[str], value: str) -> None:
    if value and value.casefold() not in (i.casefold() for i in items):
        items.append(value)


def extract_next_steps(summary: Optional[str]) -> List[str]:
    if not summary or not summary.strip():
        return []

    actions: List[str] = []
    for match in ACTION_MARKER_RE.finditer(summary):
        _append_unique(actions, match.group(1).strip())
    if actions:
        return actions

    section = NEXT_STEPS_SECTION_RE.search(summary)
    if section is None:
        return []
    for item in LIST_ITEM_RE.finditer(section.group(1)):
        _append_unique(actions, item.group(1).replace("**", "").replace("*", "").strip())
    return actions


def strip_action_markers(summary: Optional[str]) -> str:
    """Replace ``[ACTION:x]`` with ``x`` so the summary reads naturally."""
    if not summary or not summary.strip():
        return ""
    return ACTION_MARKER_RE.sub(lambda m: m.group(1).strip(), summary)
