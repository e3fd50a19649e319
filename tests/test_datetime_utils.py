"""Tests for datetime utility functions."""

from datetime import datetime, timedelta, timezone

from cardtasks.utils.datetime_utils import format_timestamp, utc_now


def test_utc_now_is_naive_utc():
    now = utc_now()
    reference = datetime.now(timezone.utc).replace(tzinfo=None)

    assert now.tzinfo is None
    assert abs(reference - now) < timedelta(seconds=5)


def test_format_naive_timestamp():
    assert format_timestamp(datetime(2025, 11, 22, 14, 13, 45)) == "2025-11-22 14:13 UTC"


def test_format_aware_timestamp_converts_to_utc():
    aware = datetime(2025, 11, 22, 16, 13, tzinfo=timezone(timedelta(hours=2)))
    assert format_timestamp(aware) == "2025-11-22 14:13 UTC"


def test_format_none():
    assert format_timestamp(None) == "-"
