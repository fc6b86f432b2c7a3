from datetime import datetime, timezone

from viralflow.services.schedule import due_slots, parse_hhmm, safe_zone


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_parse_hhmm():
    assert parse_hhmm("08:05").hour == 8
    assert parse_hhmm("8:05").minute == 5
    assert parse_hhmm("24:00") is None
    assert parse_hhmm("noon") is None


def test_slot_due_inside_window():
    now = _utc(2025, 6, 2, 14, 4)
    assert due_slots(["08:00", "14:00"], "UTC", now) == [_utc(2025, 6, 2, 14, 0)]


def test_slot_not_due_after_window():
    assert due_slots(["14:00"], "UTC", _utc(2025, 6, 2, 14, 7)) == []
    assert due_slots(["14:00"], "UTC", _utc(2025, 6, 2, 13, 59)) == []


def test_default_times_when_none_configured():
    assert due_slots([], None, _utc(2025, 6, 2, 19, 0)) == [_utc(2025, 6, 2, 19, 0)]


def test_timezone_conversion():
    # 09:00 in Berlin (CEST, UTC+2) is 07:00 UTC
    now = _utc(2025, 6, 2, 7, 3)
    assert due_slots(["09:00"], "Europe/Berlin", now) == [_utc(2025, 6, 2, 7, 0)]


def test_window_across_local_midnight():
    now = _utc(2025, 6, 3, 0, 2)
    assert due_slots(["23:58"], "UTC", now) == [_utc(2025, 6, 2, 23, 58)]


def test_unknown_timezone_falls_back_to_utc():
    assert str(safe_zone("Mars/Olympus")) == "UTC"
    assert due_slots(["10:00"], "Mars/Olympus", _utc(2025, 6, 2, 10, 1)) == [_utc(2025, 6, 2, 10, 0)]


def test_malformed_times_are_ignored():
    assert due_slots(["bogus", "10:00"], "UTC", _utc(2025, 6, 2, 10, 0)) == [_utc(2025, 6, 2, 10, 0)]


def test_naive_now_treated_as_utc():
    assert due_slots(["10:00"], "UTC", datetime(2025, 6, 2, 10, 5)) == [_utc(2025, 6, 2, 10, 0)]
