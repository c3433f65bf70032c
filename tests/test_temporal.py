from __future__ import annotations

import datetime as dt

import pytest

from devmem import temporal
from devmem.temporal import MS_PER_DAY, MS_PER_WEEK


@pytest.fixture
def frozen_now(monkeypatch: pytest.MonkeyPatch) -> int:
    now = 1_760_000_000_000
    monkeypatch.setattr(temporal, "now_ms", lambda: now)
    return now


def test_parse_since_relative_units(frozen_now: int) -> None:
    assert temporal.parse_since("3d") == frozen_now - 3 * MS_PER_DAY
    assert temporal.parse_since("2W") == frozen_now - 2 * MS_PER_WEEK
    assert temporal.parse_since("0d") is None
    assert temporal.parse_since("366d") is None
    assert temporal.parse_since("53w") is None


def test_parse_since_today_and_yesterday() -> None:
    today = temporal.start_of_day()
    assert temporal.parse_since("today") == today
    assert temporal.parse_since(" Yesterday ") == today - MS_PER_DAY


def test_parse_since_epochs_and_iso_dates() -> None:
    assert temporal.parse_since("1700000000") == 1_700_000_000_000
    assert temporal.parse_since("1700000000123") == 1_700_000_000_123
    assert temporal.parse_since("2026-01-02T00:00:00+00:00") == int(
        dt.datetime(2026, 1, 2, tzinfo=dt.UTC).timestamp() * 1000
    )
    assert temporal.parse_since("2026-01-02") == int(
        dt.datetime(2026, 1, 2, tzinfo=dt.UTC).timestamp() * 1000
    )


@pytest.mark.parametrize("value", [None, "", "soon", "-5d", "5x"])
def test_parse_since_rejects_garbage(value) -> None:
    assert temporal.parse_since(value) is None


def test_relative_label_buckets() -> None:
    today = 1_000 * MS_PER_DAY
    assert temporal.relative_label(today + 5, today) == "Today"
    assert temporal.relative_label(today - 5, today) == "Yesterday"
    assert temporal.relative_label(today - 3 * MS_PER_DAY, today) == "This Week"
    assert temporal.relative_label(today - 8 * MS_PER_DAY, today) == "Older"


def test_format_time_uses_twelve_hour_clock() -> None:
    midnight = temporal.start_of_day()
    assert temporal.format_time(midnight) == "12:00 AM"
    assert temporal.format_time(midnight + 13 * 3_600_000 + 5 * 60_000) == "1:05 PM"
