"""
Planning model.

Holds every entity of one planning problem (products, line restrictions,
operations, sales orders, penalty rules, component availability, priority
delivery criteria) on top of a TimeBucketCalendar, and answers the
capacity / availability / priority queries used by the optimizer.

The optimizer treats a model as a read-only snapshot; the only state that
changes during a run is the memoized priority-criteria cache and the
high-water mark of the earliest schedulable bucket, each guarded by a lock.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import threading
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import numpy as np

from orplan.log import setup_logger
from orplan.model.calendar import DateLike, TimeBucketCalendar, as_date
from orplan.schema import (
    BucketGranularity,
    CapacityValidation,
    ComponentAvailability,
    LineRestriction,
    Operation,
    PenaltyRule,
    PriorityDeliveryCriteria,
    Product,
    SalesOrder,
    UnderUtilizationConfig,
)


# ============================================================================
# Priority criteria derivation
# ============================================================================

# (keywords, max_delay_days, penalty_multiplier, description), first match wins
PRIORITY_TIERS: List[Tuple[Tuple[str, ...], int, float, str]] = [
    (("critical", "urgent", "emergency"), 0, 5.0,
     "Critical priority - must be on time or early"),
    (("high", "important", "priority"), 0, 3.0,
     "High priority - must be on time or early"),
    (("medium", "normal", "standard"), 7, 2.0,
     "Medium priority - up to 1 week delay allowed"),
    (("low", "flexible", "when possible"), 14, 1.0,
     "Low priority - up to 2 weeks delay allowed"),
]
DEFAULT_MAX_DELAY_DAYS = 7
DEFAULT_PENALTY_MULTIPLIER = 2.0
DEFAULT_CRITERIA_DESCRIPTION = "Default criteria"

# Mon..Fri share of a weekly capacity figure (weekly / 5 * multiplier)
WEEKDAY_CAPACITY_MULTIPLIERS = (0.8, 1.2, 1.0, 0.9, 1.1)

# buckets inspected for missing capacity entries when a line is added
CAPACITY_CHECK_BUCKETS = 30


def derive_priority_criteria(customer_priority: str) -> PriorityDeliveryCriteria:
    """
    Derive delivery criteria from a free-form priority label.

    Case-insensitive keyword match against the tiers above, e.g.
    "VIP-Critical" -> 0 days / x5.0, "Standard" -> 7 days / x2.0.
    """
    label = str(customer_priority).lower()
    for keywords, max_delay, multiplier, description in PRIORITY_TIERS:
        if any(k in label for k in keywords):
            return PriorityDeliveryCriteria(
                customer_priority=customer_priority,
                max_delay_days=max_delay,
                penalty_multiplier=multiplier,
                description=description,
            )
    return PriorityDeliveryCriteria(
        customer_priority=customer_priority,
        max_delay_days=DEFAULT_MAX_DELAY_DAYS,
        penalty_multiplier=DEFAULT_PENALTY_MULTIPLIER,
        description=DEFAULT_CRITERIA_DESCRIPTION,
    )


def _to_units(value: Any) -> int:
    """Coerce a capacity/availability cell to a non-negative int (invalid -> 0)."""
    try:
        units = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(units) or units <= 0:
        return 0
    return int(units)


# ============================================================================
# Planning model
# ============================================================================

class PlanningModel:
    """Entities of one planning problem plus the queries the optimizer needs."""

    def __init__(
        self,
        planning_start_date: Optional[DateLike] = None,
        min_early_delivery_days: int = 7,
        granularity: Union[BucketGranularity, str] = BucketGranularity.WEEKLY,
        horizon: Optional[int] = None,
        under_utilization: Optional[UnderUtilizationConfig] = None,
        clock: Optional[Callable[[], date]] = None,
        log_level: str = "INFO",
    ):
        self.clock = clock or date.today
        self.planning_start_date = (
            as_date(planning_start_date) if planning_start_date is not None else self.today()
        )
        if min_early_delivery_days < 0:
            raise ValueError(f"min_early_delivery_days must be >= 0, got {min_early_delivery_days}")
        self.min_early_delivery_days = int(min_early_delivery_days)
        self.calendar = TimeBucketCalendar(self.planning_start_date, horizon, granularity)
        self.under_utilization = under_utilization or UnderUtilizationConfig()
        self.log_level = log_level
        self.logger = setup_logger("orplan.model", log_level)

        self.products: Dict[str, Product] = {}
        self.line_restrictions: Dict[str, LineRestriction] = {}
        self.operations: Dict[str, Operation] = {}
        self.sales_orders: Dict[str, SalesOrder] = {}
        self.penalty_rules: Dict[Tuple[str, str], PenaltyRule] = {}
        self.component_availability: Dict[str, ComponentAvailability] = {}

        # configured criteria are user input; derived criteria are memoized defaults
        self._configured_criteria: Dict[str, PriorityDeliveryCriteria] = {}
        self._derived_criteria: Dict[str, PriorityDeliveryCriteria] = {}
        self._criteria_lock = threading.Lock()

        self._earliest_high_water = 0
        self._earliest_lock = threading.Lock()

        self.logger.info(
            f"Planning model initialized: start={self.planning_start_date}, "
            f"{len(self.calendar)} {self.calendar.granularity.value} buckets, "
            f"min_early_delivery_days={self.min_early_delivery_days}"
        )

    # ------------------------------------------------------------------
    # Calendar and "now"
    # ------------------------------------------------------------------

    @property
    def granularity(self) -> BucketGranularity:
        return self.calendar.granularity

    @property
    def n_buckets(self) -> int:
        return len(self.calendar)

    def today(self) -> date:
        return as_date(self.clock())

    def current_bucket(self) -> int:
        """Bucket containing today (may be negative before the planning start)."""
        return self.calendar.bucket_of(self.today())

    def earliest_schedulable_bucket(self) -> int:
        """max(0, bucket containing today); never moves backwards."""
        current = self.current_bucket()
        with self._earliest_lock:
            earliest = max(0, current, self._earliest_high_water)
            self._earliest_high_water = earliest
        return earliest

    def earliest_schedulable_bucket_for_order(self, order_number: str) -> int:
        """
        Earliest bucket an order may be produced in.

        The order may not ship more than `min_early_delivery_days` before its
        promise date, and never before today. Unknown orders get the global
        earliest bucket.
        """
        earliest = self.earliest_schedulable_bucket()
        order = self.sales_orders.get(order_number)
        if order is None:
            return earliest
        earliest_delivery = order.promise_date - timedelta(days=self.min_early_delivery_days)
        constraint_date = max(earliest_delivery, self.planning_start_date, self.today())
        return max(self.calendar.bucket_of(constraint_date), earliest)

    def bucket_to_date(self, bucket: int) -> Optional[date]:
        return self.calendar.bucket_to_date(bucket)

    def date_to_bucket(self, day: DateLike) -> int:
        return self.calendar.date_to_bucket(day)

    # ------------------------------------------------------------------
    # Entity registration
    # ------------------------------------------------------------------

    def _normalize_bucket_map(self, raw: Optional[Mapping], owner: str) -> Dict[int, int]:
        """Re-key a capacity/availability mapping by bucket index with every bucket covered."""
        if not raw:
            return {}
        normalized = {b: 0 for b in range(self.n_buckets)}
        unresolved = []
        for key, value in raw.items():
            index = self.calendar.resolve_key(key)
            if index is None:
                unresolved.append(key)
                continue
            normalized[index] = _to_units(value)
        if unresolved:
            self.logger.warning(
                f"{owner}: ignored {len(unresolved)} entries outside the planning horizon"
            )
        return normalized

    def _check_capacity_coverage(self, raw: Mapping, name: str) -> None:
        resolved = {self.calendar.resolve_key(k) for k in raw}
        check = range(min(CAPACITY_CHECK_BUCKETS, self.n_buckets))
        missing = [b for b in check if b not in resolved]
        if missing:
            self.logger.warning(
                f"Missing capacity for {len(missing)} of the first {len(check)} buckets "
                f"in restriction {name}; defaulting to 0"
            )

    def add_product(self, product: Product) -> None:
        self.products[product.product_id] = product
        self.logger.info(f"Added product: {product.product_id}")

    def add_line_restriction(self, restriction: LineRestriction) -> None:
        if restriction.capacity:
            self._check_capacity_coverage(restriction.capacity, restriction.name)
        capacity = self._normalize_bucket_map(restriction.capacity, f"Line {restriction.name}")
        self.line_restrictions[restriction.name] = dataclasses.replace(restriction, capacity=capacity)
        self.logger.info(f"Added line restriction: {restriction.name}")

    def add_operation(self, operation: Operation) -> None:
        self.operations[operation.operation_id] = operation
        self.logger.info(f"Added operation: {operation.operation_id}")

    def add_sales_order(self, order: SalesOrder) -> SalesOrder:
        """Register an order; promise dates in the past are moved to today + min early days."""
        promise = as_date(order.promise_date)
        today = self.today()
        if promise < today:
            promise = today + timedelta(days=self.min_early_delivery_days)
            self.logger.warning(
                f"Order {order.order_number} has promise date in the past. "
                f"Adjusting to current date + {self.min_early_delivery_days} days."
            )
        order = dataclasses.replace(order, promise_date=promise)
        self.sales_orders[order.order_number] = order
        self.logger.info(f"Added sales order: {order.order_number}")
        return order

    def add_penalty_rule(self, rule: PenaltyRule) -> None:
        self.penalty_rules[rule.key] = rule
        self.logger.info(f"Added penalty rule: {rule.customer_priority}_{rule.product_id}")

    def add_component_availability(self, availability: ComponentAvailability) -> None:
        normalized = self._normalize_bucket_map(
            availability.availability, f"Component {availability.component_id}"
        )
        self.component_availability[availability.component_id] = dataclasses.replace(
            availability, availability=normalized
        )
        self.logger.info(f"Added component availability: {availability.component_id}")

    def add_priority_delivery_criteria(self, criteria: PriorityDeliveryCriteria) -> None:
        with self._criteria_lock:
            if self._derived_criteria.pop(criteria.customer_priority, None) is not None:
                self.logger.warning(
                    f"Configured criteria replace derived defaults for '{criteria.customer_priority}'"
                )
            self._configured_criteria[criteria.customer_priority] = criteria
        self.logger.info(f"Added priority delivery criteria: {criteria.customer_priority}")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def priority_delivery_criteria(self) -> Dict[str, PriorityDeliveryCriteria]:
        """Configured and derived criteria merged (configured wins)."""
        with self._criteria_lock:
            merged = dict(self._derived_criteria)
        merged.update(self._configured_criteria)
        return merged

    @property
    def configured_criteria(self) -> Dict[str, PriorityDeliveryCriteria]:
        return dict(self._configured_criteria)

    def priority_criteria_for(self, customer_priority: str) -> PriorityDeliveryCriteria:
        """Configured criteria, else the memoized keyword-derived default."""
        configured = self._configured_criteria.get(customer_priority)
        if configured is not None:
            return configured
        with self._criteria_lock:
            derived = self._derived_criteria.get(customer_priority)
            if derived is None:
                derived = derive_priority_criteria(customer_priority)
                self._derived_criteria[customer_priority] = derived
            return derived

    def is_delay_acceptable(self, customer_priority: str, delay_days: int) -> bool:
        return delay_days <= self.priority_criteria_for(customer_priority).max_delay_days

    def penalty_rule_for(self, customer_priority: str, product_id: str) -> Optional[PenaltyRule]:
        return self.penalty_rules.get((customer_priority, product_id))

    def capacity_of(self, line: str, bucket: int) -> int:
        """Capacity of a line in a bucket; 0 for unknown lines or buckets."""
        restriction = self.line_restrictions.get(line)
        if restriction is None:
            return 0
        return restriction.capacity.get(bucket, 0)

    def capacity_row(self, line: str) -> np.ndarray:
        """Capacity of a line over the whole horizon."""
        restriction = self.line_restrictions.get(line)
        row = np.zeros(self.n_buckets, dtype=np.int64)
        if restriction is not None:
            for bucket, units in restriction.capacity.items():
                if 0 <= bucket < self.n_buckets:
                    row[bucket] = units
        return row

    def has_capacity(self, line: str, bucket: int) -> bool:
        return self.capacity_of(line, bucket) > 0

    def component_available(self, component_id: str, bucket: int) -> int:
        availability = self.component_availability.get(component_id)
        if availability is None:
            return 0
        return availability.availability.get(bucket, 0)

    def under_utilization_penalty(self, bucket: int, actual_usage: int, max_capacity: int) -> float:
        """
        Penalty for leaving capacity idle in a bucket.

        Buckets within the near-term window are charged a multiplier that
        decays linearly to zero at the window end; later buckets decay
        exponentially from the (smaller) future-term base.
        """
        cfg = self.under_utilization
        if max_capacity <= cfg.min_capacity_threshold:
            return 0.0
        utilization = actual_usage / max_capacity
        if utilization >= cfg.target_utilization_rate:
            return 0.0
        gap = cfg.target_utilization_rate - utilization

        day = self.calendar.day_offset(bucket)
        if day <= cfg.near_term_days:
            days_factor = (cfg.near_term_days - day) / cfg.near_term_days if cfg.near_term_days else 0.0
            multiplier = cfg.base_near_term_penalty * days_factor
        else:
            multiplier = cfg.base_future_term_penalty * cfg.decay_rate ** ((day - cfg.near_term_days) / 10)
        return gap * max_capacity * multiplier

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_capacity(self) -> CapacityValidation:
        """
        Check that optimization can run at all.

        Fails when no line restrictions exist, when no restriction has any
        bucket with positive capacity, or when every restriction is zero or
        has no data. Has no side effects.
        """
        result = CapacityValidation()
        for name, restriction in self.line_restrictions.items():
            result.total_lines += 1
            if not restriction.capacity:
                result.null_capacity_lines += 1
                result.critical_issues.append(f"Line '{name}' has no capacity data")
                continue

            zero_buckets = [b for b, units in sorted(restriction.capacity.items()) if units <= 0]
            if len(zero_buckets) == len(restriction.capacity):
                result.zero_capacity_lines += 1
                result.critical_issues.append(f"Line '{name}' has zero capacity for all buckets")
                continue

            result.has_any_valid_capacity = True
            if zero_buckets:
                keys = [self.calendar[b].key for b in zero_buckets if self.calendar.contains(b)]
                shown = ", ".join(keys[:10]) + (", ..." if len(keys) > 10 else "")
                result.issues.append(
                    f"Line '{name}' has zero capacity in {len(zero_buckets)} buckets: {shown}"
                )

        if result.total_lines == 0:
            result.ok = False
            result.critical_issues.append("No line restrictions defined")
        elif not result.has_any_valid_capacity:
            result.ok = False
            result.critical_issues.append(
                "No lines have any positive capacity - optimization cannot proceed"
            )
        elif result.zero_capacity_lines + result.null_capacity_lines == result.total_lines:
            result.ok = False
            result.critical_issues.append(
                "All lines have zero or null capacity - optimization cannot proceed"
            )
        return result

    def capacity_validation_summary(self) -> Dict[str, Any]:
        validation = self.validate_capacity()
        return {
            "can_optimize": validation.ok,
            "summary": validation.summary(),
            "issues": validation.issues,
            "critical_issues": validation.critical_issues,
        }

    # ------------------------------------------------------------------
    # Data preparation
    # ------------------------------------------------------------------

    def ensure_data_integrity(self, default_capacity: int = 10) -> None:
        """
        Repair an imported model so every order can be scheduled.

        - orders without operations get "DEFAULT_OP"
        - unknown operations are created over the existing lines
        - lines without capacity data get `default_capacity` in every bucket
        - every used priority gets its criteria derived
        """
        lines = list(self.line_restrictions)
        for number, order in list(self.sales_orders.items()):
            if not order.operations:
                order = dataclasses.replace(order, operations=("DEFAULT_OP",))
                self.sales_orders[number] = order
            for operation_id in order.operations:
                if operation_id not in self.operations:
                    self.operations[operation_id] = Operation(
                        operation_id=operation_id,
                        primary_line=lines[0] if lines else "DEFAULT_LINE",
                        alternate_lines=tuple(lines[1:]),
                    )
                    self.logger.warning(f"Created placeholder operation {operation_id}")

        for name, restriction in self.line_restrictions.items():
            if not restriction.capacity:
                restriction.capacity = {b: default_capacity for b in range(self.n_buckets)}
                self.logger.warning(f"Line {name} had no capacity data; using {default_capacity}/bucket")

        self.derive_used_priorities()

    def derive_used_priorities(self) -> None:
        for priority in self.used_priorities():
            self.priority_criteria_for(priority)

    def used_priorities(self) -> List[str]:
        seen: Dict[str, None] = {}
        for order in self.sales_orders.values():
            if order.customer_priority:
                seen.setdefault(order.customer_priority)
        return list(seen)

    def weekly_to_daily_capacity(self, weekly: Mapping[Any, Any]) -> Dict[int, int]:
        """
        Spread weekly line capacity over the days of a daily calendar.

        `weekly` is keyed by week number relative to the planning start or
        by any date inside the week. Weekends get 0; weekdays get
        weekly / 5 scaled by the Mon-Fri multipliers, rounded down.
        """
        per_week = self._weekly_amounts(weekly)
        daily = {}
        for bucket in self.calendar:
            if bucket.is_weekend:
                daily[bucket.index] = 0
                continue
            amount = per_week.get(self._week_of(bucket.start), 0)
            multiplier = WEEKDAY_CAPACITY_MULTIPLIERS[bucket.start.weekday()]
            daily[bucket.index] = max(0, int(amount / 5 * multiplier))
        return daily

    def weekly_to_daily_availability(self, weekly: Mapping[Any, Any]) -> Dict[int, int]:
        """Spread weekly component availability evenly over 7 days (rounded down)."""
        per_week = self._weekly_amounts(weekly)
        return {
            bucket.index: per_week.get(self._week_of(bucket.start), 0) // 7
            for bucket in self.calendar
        }

    def _week_of(self, day: date) -> int:
        return (day - self.planning_start_date).days // 7

    def _weekly_amounts(self, weekly: Mapping[Any, Any]) -> Dict[int, int]:
        if not self.calendar.is_daily:
            raise ValueError("weekly-to-daily conversion needs a daily calendar")
        amounts = {}
        for key, value in weekly.items():
            if isinstance(key, int) and not isinstance(key, bool):
                week = key
            else:
                try:
                    week = self._week_of(as_date(key))
                except (TypeError, ValueError):
                    continue
            amounts[week] = _to_units(value)
        return amounts

    def load_sample_data(self, order_count: int = 50, seed: Optional[int] = None) -> None:
        """Populate the model with the forklift sample factory."""
        from orplan.model.sample_data import load_sample_data

        load_sample_data(self, order_count=order_count, seed=seed)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def copy(self) -> "PlanningModel":
        """Independent snapshot sharing only the clock."""
        clone = PlanningModel(
            planning_start_date=self.planning_start_date,
            min_early_delivery_days=self.min_early_delivery_days,
            granularity=self.granularity,
            horizon=self.n_buckets,
            under_utilization=copy.deepcopy(self.under_utilization),
            clock=self.clock,
            log_level=self.log_level,
        )
        clone.products = dict(self.products)
        clone.line_restrictions = copy.deepcopy(self.line_restrictions)
        clone.operations = dict(self.operations)
        clone.sales_orders = copy.deepcopy(self.sales_orders)
        clone.penalty_rules = dict(self.penalty_rules)
        clone.component_availability = copy.deepcopy(self.component_availability)
        clone._configured_criteria = dict(self._configured_criteria)
        with self._criteria_lock:
            clone._derived_criteria = dict(self._derived_criteria)
        with self._earliest_lock:
            clone._earliest_high_water = self._earliest_high_water
        return clone

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot of the model."""
        return {
            "planning_start_date": self.planning_start_date.isoformat(),
            "min_early_delivery_days": self.min_early_delivery_days,
            "granularity": self.granularity.value,
            "horizon": self.n_buckets,
            "under_utilization": dataclasses.asdict(self.under_utilization),
            "products": [dataclasses.asdict(p) for p in self.products.values()],
            "line_restrictions": [
                {
                    "name": r.name,
                    "validity": r.validity,
                    "penalty_cost": r.penalty_cost,
                    "capacity": {str(b): u for b, u in sorted(r.capacity.items())},
                }
                for r in self.line_restrictions.values()
            ],
            "operations": [
                {
                    "operation_id": op.operation_id,
                    "primary_line": op.primary_line,
                    "alternate_lines": list(op.alternate_lines),
                }
                for op in self.operations.values()
            ],
            "sales_orders": [
                {
                    "order_number": o.order_number,
                    "product_id": o.product_id,
                    "promise_date": o.promise_date.isoformat(),
                    "quantity": o.quantity,
                    "revenue": o.revenue,
                    "cost": o.cost,
                    "customer_priority": o.customer_priority,
                    "operations": list(o.operations),
                    "components": dict(o.components),
                }
                for o in self.sales_orders.values()
            ],
            "penalty_rules": [dataclasses.asdict(r) for r in self.penalty_rules.values()],
            "component_availability": [
                {
                    "component_id": c.component_id,
                    "availability": {str(b): u for b, u in sorted(c.availability.items())},
                }
                for c in self.component_availability.values()
            ],
            "priority_delivery_criteria": [
                dataclasses.asdict(c) for c in self._configured_criteria.values()
            ],
        }
