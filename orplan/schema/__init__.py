"""
ORPLAN Schema - planning data model

Entities of the order book and the factory (lines, operations, components)
plus the rules used to score a schedule.
"""

from .enums import (
    BucketGranularity,
    JobStatus,
)

from .models import (
    Product,
    LineRestriction,
    Operation,
    SalesOrder,
    PenaltyRule,
    ComponentAvailability,
    PriorityDeliveryCriteria,
    UnderUtilizationConfig,
    CapacityValidation,
)

__all__ = [
    # Enums
    "BucketGranularity",
    "JobStatus",
    # Models
    "Product",
    "LineRestriction",
    "Operation",
    "SalesOrder",
    "PenaltyRule",
    "ComponentAvailability",
    "PriorityDeliveryCriteria",
    "UnderUtilizationConfig",
    "CapacityValidation",
]
