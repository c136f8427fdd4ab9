from datetime import date

import numpy as np
import pytest

from orplan.model import TimeBucketCalendar, as_date
from orplan.schema import BucketGranularity


START = date(2025, 1, 6)


def test_weekly_defaults():
    cal = TimeBucketCalendar(START)
    assert cal.granularity is BucketGranularity.WEEKLY
    assert len(cal) == 52
    assert cal[1].start == date(2025, 1, 13)
    assert cal[0].end == date(2025, 1, 12)
    assert cal.end_date == date(2026, 1, 4)


def test_daily_buckets_flag_weekends():
    cal = TimeBucketCalendar(START, 14, "daily")
    assert len(cal) == 14
    assert cal.is_daily
    assert [b.index for b in cal if b.is_weekend] == [5, 6, 12, 13]


def test_bucket_of_and_clamped_date_to_bucket():
    cal = TimeBucketCalendar(START, 10)
    assert cal.bucket_of(date(2025, 1, 12)) == 0
    assert cal.bucket_of(date(2025, 1, 13)) == 1
    assert cal.bucket_of(date(2025, 1, 5)) == -1
    assert cal.date_to_bucket(date(2025, 1, 5)) == 0
    assert cal.bucket_of("2025-01-20") == 2


def test_bucket_to_date_out_of_range_is_none():
    cal = TimeBucketCalendar(START, 10)
    assert cal.bucket_to_date(3) == date(2025, 1, 27)
    assert cal.bucket_to_date(10) is None
    assert cal.bucket_to_date(-1) is None


def test_days_to_buckets_rounds_up():
    weekly = TimeBucketCalendar(START, 10)
    daily = TimeBucketCalendar(START, 10, BucketGranularity.DAILY)
    assert weekly.days_to_buckets(0) == 0
    assert weekly.days_to_buckets(7) == 1
    assert weekly.days_to_buckets(8) == 2
    assert daily.days_to_buckets(7) == 7
    assert weekly.day_offset(3) == 21


def test_resolve_key():
    cal = TimeBucketCalendar(START, 10)
    assert cal.resolve_key(3) == 3
    assert cal.resolve_key(np.int64(4)) == 4
    assert cal.resolve_key("5") == 5
    assert cal.resolve_key("2025-01-13") == 1
    assert cal.resolve_key("2025-01-15") == 1       # inside bucket 1
    assert cal.resolve_key(date(2025, 1, 27)) == 3
    assert cal.resolve_key(10) is None
    assert cal.resolve_key("2030-01-01") is None
    assert cal.resolve_key(True) is None
    assert cal.resolve_key("not a date") is None


def test_non_positive_horizon_rejected():
    with pytest.raises(ValueError):
        TimeBucketCalendar(START, 0)


def test_as_date_accepts_strings_and_datetimes():
    assert as_date("2025-02-01") == date(2025, 2, 1)
    assert as_date(START) is START
