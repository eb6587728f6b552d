"""Fallback field matcher for malformed generation output.

When the backend's reply is not valid JSON, individual fields can often
still be recovered from the text. Patterns run from the most specific
(fully quoted) to the loosest so trailing punctuation isn't captured.
"""

from __future__ import annotations

import re


def _patterns(field_name: str) -> list[re.Pattern[str]]:
    name = re.escape(field_name)
    return [
        re.compile(rf'"{name}"\s*:\s*"([^"]+)"', re.IGNORECASE),
        re.compile(rf'{name}\s*:\s*"([^"]+)"', re.IGNORECASE),
        re.compile(rf'"{name}"\s*:\s*([^,}}]+)', re.IGNORECASE),
    ]


def extract_field(raw_text: str, field_name: str) -> str | None:
    """Return the first recoverable value for `field_name`, or None."""
    for pattern in _patterns(field_name):
        match = pattern.search(raw_text)
        if match and match.group(1):
            value = match.group(1).strip().strip('"').strip()
            if value:
                return value
    return None
