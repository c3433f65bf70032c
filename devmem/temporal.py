from __future__ import annotations

import datetime as dt
import re
import time

MS_PER_DAY = 86_400_000
MS_PER_WEEK = MS_PER_DAY * 7

_DAYS_RE = re.compile(r"^(\d+)d$")
_WEEKS_RE = re.compile(r"^(\d+)w$")
_EPOCH_RE = re.compile(r"^\d{10,13}$")


def now_ms() -> int:
    return int(time.time() * 1000)


def start_of_day(moment: dt.datetime | None = None) -> int:
    """Local midnight of `moment` (default now) as epoch milliseconds."""
    local = (moment or dt.datetime.now()).astimezone()
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def parse_since(since: str | None) -> int | None:
    """Parse a `since` filter into epoch milliseconds.

    Accepts "today", "yesterday", "Nd" (1-365), "Nw" (1-52), 10-13 digit epochs
    (seconds are scaled to milliseconds) and ISO dates. Returns None otherwise.
    """
    if not since or not isinstance(since, str):
        return None
    trimmed = since.strip().lower()
    if trimmed == "today":
        return start_of_day()
    if trimmed == "yesterday":
        return start_of_day() - MS_PER_DAY

    days = _DAYS_RE.match(trimmed)
    if days:
        count = int(days.group(1))
        return now_ms() - count * MS_PER_DAY if 0 < count <= 365 else None

    weeks = _WEEKS_RE.match(trimmed)
    if weeks:
        count = int(weeks.group(1))
        return now_ms() - count * MS_PER_WEEK if 0 < count <= 52 else None

    if _EPOCH_RE.match(trimmed):
        epoch = int(trimmed)
        return epoch * 1000 if epoch < 10_000_000_000 else epoch

    try:
        parsed = dt.datetime.fromisoformat(since.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return int(parsed.timestamp() * 1000)


def relative_label(epoch: int, today: int | None = None) -> str:
    """Today, Yesterday, This Week or Older, relative to local midnight."""
    if today is None:
        today = start_of_day()
    if epoch >= today:
        return "Today"
    if epoch >= today - MS_PER_DAY:
        return "Yesterday"
    if epoch >= today - MS_PER_WEEK:
        return "This Week"
    return "Older"


def _local(epoch: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(epoch / 1000).astimezone()


def format_date(epoch: int) -> str:
    moment = _local(epoch)
    return f"{moment.strftime('%b')} {moment.day}, {moment.year}"


def format_time(epoch: int) -> str:
    moment = _local(epoch)
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def format_date_time(epoch: int) -> str:
    moment = _local(epoch)
    return f"{moment.strftime('%b')} {moment.day}, {format_time(epoch)}"
