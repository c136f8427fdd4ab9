"""
ORPLAN Model - calendar and planning model
"""

from .calendar import (
    Bucket,
    TimeBucketCalendar,
    as_date,
)

from .planning_model import (
    PlanningModel,
    PRIORITY_TIERS,
    derive_priority_criteria,
)

from .sample_data import load_sample_data

__all__ = [
    # Calendar
    "Bucket",
    "TimeBucketCalendar",
    "as_date",
    # Planning model
    "PlanningModel",
    "PRIORITY_TIERS",
    "derive_priority_criteria",
    "load_sample_data",
]
