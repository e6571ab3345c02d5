"""
Unit tests for timezone utility helpers.
"""

from datetime import datetime, timedelta, timezone

from crm_automation.utils.timezone import ensure_aware, now_utc, parse_iso, to_zone


def test_now_utc_is_aware():
    current = now_utc()
    assert current.utcoffset() == timedelta(0)


def test_ensure_aware_defaults_to_utc():
    value = ensure_aware(datetime(2024, 1, 1, 9, 0))
    assert value.tzinfo == timezone.utc


def test_ensure_aware_with_zone_name():
    """Naive values are localized, so the offset follows DST"""
    winter = ensure_aware(datetime(2024, 1, 15, 9, 0), "Europe/Madrid")
    summer = ensure_aware(datetime(2024, 7, 15, 9, 0), "Europe/Madrid")
    assert winter.utcoffset() == timedelta(hours=1)
    assert summer.utcoffset() == timedelta(hours=2)


def test_ensure_aware_keeps_aware_values():
    value = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert ensure_aware(value, "Asia/Seoul") is value


def test_to_zone():
    local = to_zone(datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc), "Asia/Seoul")
    assert local.hour == 9
    assert local.utcoffset() == timedelta(hours=9)


def test_parse_iso():
    assert parse_iso(None) is None
    assert parse_iso("") is None
    assert parse_iso("2024-01-01T09:00:00+00:00") == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)
    assert parse_iso("2024-01-01T09:00:00Z") == datetime(2024, 1, 1, 9, tzinfo=timezone.utc)
    assert parse_iso("2024-01-01T09:00:00").tzinfo == timezone.utc


def test_parse_iso_accepts_datetime():
    assert parse_iso(datetime(2024, 1, 1)) == datetime(2024, 1, 1, tzinfo=timezone.utc)
