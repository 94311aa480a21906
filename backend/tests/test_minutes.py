"""Unit tests for provider minute parsing."""
from __future__ import annotations

import pytest

from shared.utils.minutes import (
    MISSING_MINUTE_ORDER,
    bucket_minute,
    minute_order,
    normalize_minute,
    sort_minute,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("45", "45"),
        ("45'", "45"),
        (" 45 + 2 ' ", "45+2"),
        ("90’", "90"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalize_minute(raw, expected) -> None:
    assert normalize_minute(raw) == expected


def test_minute_order_plain_and_stoppage() -> None:
    assert minute_order("45") == 4500
    assert minute_order("45+2") == 4502
    assert minute_order("45 + 2 '") == 4502
    assert minute_order("90'") == 9000


def test_stoppage_sorts_between_minutes() -> None:
    assert minute_order("45") < minute_order("45+2") < minute_order("46")


@pytest.mark.parametrize("raw", [None, "", "FT", "HT", "abc", "45+"])
def test_minute_order_unparseable(raw) -> None:
    assert minute_order(raw) is None


def test_missing_minute_sorts_last_and_buckets_negative() -> None:
    assert sort_minute("FT") == MISSING_MINUTE_ORDER
    assert sort_minute("120+3") < MISSING_MINUTE_ORDER
    assert bucket_minute(None) == -1
    assert bucket_minute("12") == 1200
