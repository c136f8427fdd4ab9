"""
ORPLAN Schema - core data model
Reference data, order book and planning rules used by the scheduler.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class Product:
    """Finished product (reference data)"""
    product_id: str
    name: str
    description: str = ""


@dataclass
class LineRestriction:
    """
    Production line restriction with per-bucket capacity.

    `capacity` is keyed by bucket index once the restriction has been added
    to a PlanningModel. Before that it may be keyed by bucket index, bucket
    start date or ISO date string.
    """
    name: str                        # unique key
    validity: bool = True
    penalty_cost: float = 0.0        # cost per unit of excess (before the ^1.5 growth)
    capacity: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class Operation:
    """Routing step that must run on its primary line or one of the alternates"""
    operation_id: str
    primary_line: str
    alternate_lines: Tuple[str, ...] = ()

    @property
    def candidate_lines(self) -> List[str]:
        """Primary line first, then alternates in preference order"""
        return [self.primary_line, *self.alternate_lines]


@dataclass(frozen=True)
class SalesOrder:
    """Customer order to be scheduled"""
    order_number: str                # unique key
    product_id: str
    promise_date: date
    quantity: int
    revenue: float = 0.0
    cost: float = 0.0
    customer_priority: str = "Medium"  # free-form label
    operations: Tuple[str, ...] = ()
    components: Dict[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if int(self.quantity) <= 0:
            raise ValueError(
                f"Order {self.order_number}: quantity must be positive, got {self.quantity}"
            )
        object.__setattr__(self, "quantity", int(self.quantity))
        object.__setattr__(self, "operations", tuple(self.operations))


@dataclass(frozen=True)
class PenaltyRule:
    """Late/no-fulfillment penalty for a (priority, product) combination"""
    customer_priority: str
    product_id: str
    late_delivery_penalty: float
    no_fulfillment_penalty: float = 0.0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.customer_priority, self.product_id)


@dataclass
class ComponentAvailability:
    """Per-bucket available quantity of a purchased component"""
    component_id: str
    availability: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class PriorityDeliveryCriteria:
    """Delivery tolerance and lateness weighting for a customer priority"""
    customer_priority: str
    max_delay_days: int
    penalty_multiplier: float
    description: str = ""


@dataclass
class UnderUtilizationConfig:
    """
    Idle-capacity penalty tuning.

    Near-term buckets (first `near_term_days`) get a linearly decaying
    multiplier starting at `base_near_term_penalty`; later buckets get
    `base_future_term_penalty * decay_rate ** (days_past_near_term / 10)`.
    """
    base_near_term_penalty: float = 25.0
    base_future_term_penalty: float = 2.0
    near_term_days: int = 30
    decay_rate: float = 0.95
    target_utilization_rate: float = 0.70
    min_capacity_threshold: int = 1


@dataclass
class CapacityValidation:
    """Result of PlanningModel.validate_capacity()"""
    ok: bool = True
    critical_issues: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    total_lines: int = 0
    zero_capacity_lines: int = 0
    null_capacity_lines: int = 0
    has_any_valid_capacity: bool = False

    @property
    def valid_lines(self) -> int:
        return self.total_lines - self.zero_capacity_lines - self.null_capacity_lines

    def summary(self) -> str:
        return (
            f"Lines: {self.total_lines}, Valid: {self.valid_lines}, "
            f"Zero: {self.zero_capacity_lines}, Null: {self.null_capacity_lines}"
        )

