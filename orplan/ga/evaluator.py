"""
Schedule fitness evaluator.

Scores one Individual against a read-only PlanningModel:

- constraint tiers (before today, before the order's earliest bucket,
  beyond the horizon) charge a flat penalty and skip further scoring
- lateness beyond the priority tolerance plus the penalty-rule late charge
- perfect-timing and early-window bonuses, too-early penalty
- line capacity overrun (superlinear in the excess) with severe and
  aggregate surcharges
- component shortfall
- optional under-utilization and unnecessary-delay penalties

fitness = max(0, base_fitness - total_penalty); higher is better.

Usage:
    from orplan.ga.evaluator import FitnessEvaluator
    evaluator = FitnessEvaluator(model)
    breakdown = evaluator.evaluate(individual)
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any, DefaultDict, Dict, Optional

from orplan.ga.individual import Individual
from orplan.ga.tracker import CapacityTracker
from orplan.model.planning_model import PlanningModel


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class FitnessConfig:
    """Fitness constants"""
    base_fitness: float = 100000.0

    # constraint tiers
    past_bucket_penalty: float = 100000.0
    order_earliest_penalty: float = 50000.0
    beyond_horizon_penalty: float = 25000.0

    # timing
    excess_delay_rate: float = 200.0          # per excess day x multiplier
    late_unit_days: int = 7                   # penalty-rule lateness is counted in these units
    late_exponent: float = 1.5
    early_bonus_max: float = 30.0             # bonus = max(min, max - |days|)
    early_bonus_min: float = 10.0
    too_early_penalty_per_week: float = 1000.0

    # capacity
    capacity_exponent: float = 1.5
    severe_violation_penalty: float = 5000.0
    severe_violation_aggregate_penalty: float = 2000.0
    aggregate_violation_threshold: int = 10
    aggregate_violation_rate: float = 100.0

    # components
    component_shortfall_rate: float = 50.0

    # under-utilization
    under_utilization_window_days: int = 90

    # unnecessary delay
    unnecessary_delay_threshold_days: int = 7

    def __post_init__(self):
        if self.late_unit_days <= 0:
            raise ValueError(f"late_unit_days must be > 0, got {self.late_unit_days}")
        if self.under_utilization_window_days < 0:
            raise ValueError("under_utilization_window_days must be >= 0")


@dataclass
class FitnessBreakdown:
    """Penalty components of one evaluation"""
    # penalties (bonuses are stored positive and subtracted)
    constraint_penalty: float = 0.0
    delay_penalty: float = 0.0
    late_penalty: float = 0.0
    too_early_penalty: float = 0.0
    timing_bonus: float = 0.0
    capacity_penalty: float = 0.0
    component_penalty: float = 0.0
    under_utilization_penalty: float = 0.0
    unnecessary_delay_penalty: float = 0.0

    # counters
    past_bucket_orders: int = 0
    order_constraint_orders: int = 0
    beyond_horizon_orders: int = 0
    late_orders: int = 0
    on_time_orders: int = 0
    early_orders: int = 0
    too_early_orders: int = 0
    capacity_violation_units: int = 0
    severe_violations: int = 0

    total_penalty: float = 0.0
    fitness: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ============================================================================
# Evaluator
# ============================================================================

class FitnessEvaluator:
    """Pure function of (individual, model); safe to call from several threads."""

    def __init__(
        self,
        model: PlanningModel,
        config: Optional[FitnessConfig] = None,
        perfect_timing_bonus: float = 50.0,
        enable_under_utilization: bool = False,
        under_utilization_weight: float = 0.3,
        unnecessary_delay_penalty: float = 100.0,
        enable_unnecessary_delay_penalty: bool = False,
    ):
        self.model = model
        self.config = config or FitnessConfig()
        self.perfect_timing_bonus = perfect_timing_bonus
        self.enable_under_utilization = enable_under_utilization
        self.under_utilization_weight = under_utilization_weight
        self.unnecessary_delay_penalty = unnecessary_delay_penalty
        self.enable_unnecessary_delay_penalty = enable_unnecessary_delay_penalty

    def fitness(self, individual: Individual) -> float:
        return self.evaluate(individual).fitness

    def evaluate(self, individual: Individual) -> FitnessBreakdown:
        model = self.model
        cfg = self.config
        calendar = model.calendar
        result = FitnessBreakdown()

        usage: DefaultDict[str, DefaultDict[int, int]] = defaultdict(lambda: defaultdict(int))
        earliest = model.earliest_schedulable_bucket()
        remaining = (
            CapacityTracker.from_individual(model, individual)
            if self.enable_unnecessary_delay_penalty else None
        )

        for order_number, gene in individual.items():
            order = model.sales_orders.get(order_number)
            if order is None:
                continue
            bucket = gene.bucket

            if bucket < earliest:
                result.constraint_penalty += cfg.past_bucket_penalty
                result.past_bucket_orders += 1
                continue
            order_earliest = model.earliest_schedulable_bucket_for_order(order_number)
            if bucket < order_earliest:
                result.constraint_penalty += cfg.order_earliest_penalty
                result.order_constraint_orders += 1
                continue
            if bucket >= len(calendar):
                result.constraint_penalty += cfg.beyond_horizon_penalty
                result.beyond_horizon_orders += 1
                continue

            days = (calendar.bucket_to_date(bucket) - order.promise_date).days
            if days > 0:
                self._score_late(result, order, days)
                if remaining is not None and days > cfg.unnecessary_delay_threshold_days:
                    if self._could_start_earlier(remaining, order, order_earliest, bucket):
                        result.unnecessary_delay_penalty += (
                            days // cfg.late_unit_days * self.unnecessary_delay_penalty
                        )
            elif days == 0:
                result.timing_bonus += self.perfect_timing_bonus
                result.on_time_orders += 1
            elif days >= -model.min_early_delivery_days:
                result.timing_bonus += max(cfg.early_bonus_min, cfg.early_bonus_max - abs(days))
                result.early_orders += 1
            else:
                # every started week counts
                result.too_early_penalty += cfg.too_early_penalty_per_week * -(days // 7)
                result.too_early_orders += 1

            # capacity: usage accumulates across orders in assignment order
            for line in gene.operations.values():
                usage[line][bucket] += order.quantity
                restriction = model.line_restrictions.get(line)
                if restriction is None:
                    continue
                available = restriction.capacity.get(bucket, 0)
                used = usage[line][bucket]
                if used > available:
                    excess = used - available
                    result.capacity_penalty += restriction.penalty_cost * excess ** cfg.capacity_exponent
                    result.capacity_violation_units += excess
                    if excess >= available:
                        result.severe_violations += 1
                        result.capacity_penalty += cfg.severe_violation_penalty

            for component_id, required in order.components.items():
                if component_id not in model.component_availability:
                    continue
                available = model.component_available(component_id, bucket)
                if required > available:
                    result.component_penalty += (required - available) * cfg.component_shortfall_rate

        if result.severe_violations:
            result.capacity_penalty += result.severe_violations * cfg.severe_violation_aggregate_penalty
        if result.capacity_violation_units > cfg.aggregate_violation_threshold:
            result.capacity_penalty += result.capacity_violation_units * cfg.aggregate_violation_rate

        if self.enable_under_utilization:
            result.under_utilization_penalty = (
                self._under_utilization(usage) * self.under_utilization_weight
            )

        result.total_penalty = (
            result.constraint_penalty
            + result.delay_penalty
            + result.late_penalty
            + result.too_early_penalty
            - result.timing_bonus
            + result.capacity_penalty
            + result.component_penalty
            + result.under_utilization_penalty
            + result.unnecessary_delay_penalty
        )
        result.fitness = max(0.0, cfg.base_fitness - result.total_penalty)
        return result

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _score_late(self, result: FitnessBreakdown, order, days: int) -> None:
        cfg = self.config
        criteria = self.model.priority_criteria_for(order.customer_priority)
        result.late_orders += 1
        if days > criteria.max_delay_days:
            excess = days - criteria.max_delay_days
            result.delay_penalty += excess * cfg.excess_delay_rate * criteria.penalty_multiplier

        rule = self.model.penalty_rule_for(order.customer_priority, order.product_id)
        if rule is not None:
            units_late = days // cfg.late_unit_days
            result.late_penalty += (
                rule.late_delivery_penalty
                * (units_late + 1) ** cfg.late_exponent
                * criteria.penalty_multiplier
            )

    def _could_start_earlier(self, remaining: CapacityTracker, order, start: int, bucket: int) -> bool:
        """True if some bucket in [start, bucket) still fits every operation of the order."""
        for earlier in range(max(start, 0), bucket):
            if remaining.find_lines(self.model, order, earlier) is not None:
                return True
        return False

    def _under_utilization(self, usage: Dict[str, Dict[int, int]]) -> float:
        model = self.model
        calendar = model.calendar
        window = [
            b for b in range(len(calendar))
            if calendar.day_offset(b) < self.config.under_utilization_window_days
        ]
        total = 0.0
        for name, restriction in model.line_restrictions.items():
            if not restriction.capacity:
                continue
            line_usage = usage.get(name, {})
            for bucket in window:
                max_capacity = restriction.capacity.get(bucket, 0)
                if max_capacity > 0:
                    total += model.under_utilization_penalty(bucket, line_usage.get(bucket, 0), max_capacity)
        return total
