"""
Posting-time slots per account.

An account lists local "HH:MM" times plus an IANA timezone. A slot is due
when `slot <= now <= slot + window`; the window is slightly longer than the
trigger interval (default 6 min for a 5 min cron) so no slot is skipped.
The UTC slot instant doubles as the idempotency key for that post.
"""
from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_POSTING_TIMES = ("08:00", "14:00", "19:00")
DEFAULT_WINDOW_MINUTES = 6

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_hhmm(value: str) -> time | None:
    match = _HHMM_RE.match((value or "").strip())
    if not match:
        return None
    return time(int(match.group(1)), int(match.group(2)))


def safe_zone(name: str | None) -> ZoneInfo:
    if not name or not name.strip():
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"[schedule] Unknown timezone {name!r}, falling back to UTC")
        return ZoneInfo("UTC")


def slot_to_utc(day: date, at: time, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=zone).astimezone(timezone.utc)


def due_slots(
    posting_times: list[str] | None,
    tz_name: str | None,
    now: datetime,
    *,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
) -> list[datetime]:
    """UTC instants of every slot whose window contains `now`, oldest first."""
    zone = safe_zone(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    window = timedelta(minutes=window_minutes)
    today = now.astimezone(zone).date()

    times = [t for t in (posting_times or []) if t and t.strip()] or list(DEFAULT_POSTING_TIMES)
    due: set[datetime] = set()
    for raw in times:
        at = parse_hhmm(raw)
        if at is None:
            logger.warning(f"[schedule] Ignoring malformed posting time {raw!r}")
            continue
        # Yesterday too, for windows that cross local midnight
        for day in (today - timedelta(days=1), today):
            start = slot_to_utc(day, at, zone)
            if start <= now <= start + window:
                due.add(start)
    return sorted(due)
