"""
Time-bucket calendar.

Maps a planning start date and a horizon to an ordered list of buckets of
fixed width (7 days for weekly planning, 1 day for daily planning). All
scheduling logic works in bucket-index space; the calendar is the only
place that knows about dates.
"""

from __future__ import annotations

import math
import numbers
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterator, List, Optional, Union

import pandas as pd

from orplan.schema import BucketGranularity


DateLike = Union[date, datetime, str, pd.Timestamp]


def as_date(value: DateLike) -> date:
    """Normalize a date, datetime, Timestamp or ISO string to `datetime.date`."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return pd.Timestamp(value).date()


@dataclass(frozen=True)
class Bucket:
    """One planning bucket"""
    index: int
    start: date
    end: date                        # last day covered (inclusive)
    is_weekend: bool = False         # daily calendars only

    @property
    def key(self) -> str:
        return self.start.isoformat()

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


class TimeBucketCalendar:
    """Contiguous, zero-based buckets starting at the planning start date."""

    def __init__(
        self,
        start_date: DateLike,
        n_buckets: Optional[int] = None,
        granularity: Union[BucketGranularity, str] = BucketGranularity.WEEKLY,
    ):
        self.granularity = BucketGranularity(granularity)
        self.start_date = as_date(start_date)
        self.width_days = self.granularity.width_days
        n_buckets = self.granularity.default_horizon if n_buckets is None else int(n_buckets)
        if n_buckets <= 0:
            raise ValueError(f"horizon must contain at least one bucket, got {n_buckets}")

        starts = pd.date_range(start=self.start_date, periods=n_buckets, freq=f"{self.width_days}D")
        span = pd.Timedelta(days=self.width_days - 1)
        self.buckets: List[Bucket] = [
            Bucket(
                index=i,
                start=ts.date(),
                end=(ts + span).date(),
                is_weekend=self.width_days == 1 and ts.dayofweek >= 5,
            )
            for i, ts in enumerate(starts)
        ]
        self._index_by_key = {b.key: b.index for b in self.buckets}

    def __len__(self) -> int:
        return len(self.buckets)

    def __iter__(self) -> Iterator[Bucket]:
        return iter(self.buckets)

    def __getitem__(self, index: int) -> Bucket:
        return self.buckets[index]

    @property
    def is_daily(self) -> bool:
        return self.granularity is BucketGranularity.DAILY

    @property
    def end_date(self) -> date:
        return self.buckets[-1].end

    def contains(self, index: int) -> bool:
        return 0 <= index < len(self.buckets)

    def bucket_of(self, day: DateLike) -> int:
        """Index of the bucket containing `day`; may be negative or past the horizon."""
        offset = (as_date(day) - self.start_date).days
        return offset // self.width_days

    def date_to_bucket(self, day: DateLike) -> int:
        """Bucket containing `day`, clamped to >= 0."""
        return max(0, self.bucket_of(day))

    def bucket_to_date(self, index: int) -> Optional[date]:
        """Start date of a bucket, or None if out of range."""
        if not self.contains(index):
            return None
        return self.buckets[index].start

    def day_offset(self, index: int) -> int:
        """Days between the planning start and the start of bucket `index`."""
        return index * self.width_days

    def days_to_buckets(self, days: int) -> int:
        """Number of buckets needed to cover `days` days (rounded up)."""
        if days <= 0:
            return 0
        return math.ceil(days / self.width_days)

    def resolve_key(self, key: Any) -> Optional[int]:
        """
        Map a capacity/availability key to a bucket index.

        Accepts bucket indices, dates and ISO date strings. Dates that fall
        inside a bucket resolve to that bucket. Unknown keys give None.
        """
        if isinstance(key, bool):
            return None
        if isinstance(key, numbers.Integral):
            key = int(key)
            return key if self.contains(key) else None
        if isinstance(key, str):
            if key in self._index_by_key:
                return self._index_by_key[key]
            if key.strip().isdigit():
                return self.resolve_key(int(key))
        try:
            index = self.bucket_of(key)
        except (TypeError, ValueError):
            return None
        return index if self.contains(index) else None
