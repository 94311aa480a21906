"""
Minute parsing for provider clock strings.

Providers send the match minute as free text: "45", "45+2", "90'", " 45 + 2 ' ".
``minute_order`` turns it into ``base * 100 + stoppage`` so 45+2 sorts after
45 and before 46.
"""
from __future__ import annotations

import re
from typing import Optional

_MINUTE_RE = re.compile(r"^(\d+)(?:\+(\d+))?$")
_APOSTROPHES = ("’", "‘", "´", "`", "â€™")

# Missing minutes sort after every parseable one.
MISSING_MINUTE_ORDER = 2**31 - 1


def normalize_minute(raw: Optional[str]) -> str:
    """Canonical compact form: no whitespace, straight quote stripped from the end."""
    text = (raw or "").strip()
    for mark in _APOSTROPHES:
        text = text.replace(mark, "'")
    text = "".join(text.split())
    if text.endswith("'"):
        text = text[:-1]
    return text


def minute_order(raw: Optional[str]) -> Optional[int]:
    """Integer ordering key for a minute string, or None when unparseable."""
    text = normalize_minute(raw)
    if not text:
        return None
    match = _MINUTE_RE.match(text)
    if match is None:
        return None
    base = int(match.group(1))
    stoppage = int(match.group(2) or 0)
    return base * 100 + stoppage


def sort_minute(raw: Optional[str]) -> int:
    value = minute_order(raw)
    return MISSING_MINUTE_ORDER if value is None else value


def bucket_minute(raw: Optional[str]) -> int:
    value = minute_order(raw)
    return -1 if value is None else value
