"""
ORPLAN Schema - enum types
"""

from enum import Enum


class BucketGranularity(str, Enum):
    """Planning bucket width"""
    WEEKLY = "weekly"
    DAILY = "daily"

    @property
    def width_days(self) -> int:
        return 7 if self is BucketGranularity.WEEKLY else 1

    @property
    def default_horizon(self) -> int:
        """Default number of buckets (one year)"""
        return 52 if self is BucketGranularity.WEEKLY else 365


class JobStatus(str, Enum):
    """Optimization job state"""
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING
