"""
Shared fixtures: a controllable clock and small hand-built models.
"""

from datetime import date, timedelta
from typing import Dict, Optional, Sequence

import pytest

from orplan.model import PlanningModel
from orplan.schema import LineRestriction, Operation, SalesOrder


PLANNING_START = date(2025, 1, 6)   # a Monday


class FakeClock:
    """Callable returning a settable 'today'."""

    def __init__(self, today: date = PLANNING_START):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int) -> None:
        self.today += timedelta(days=days)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def build_model(
    clock: FakeClock,
    capacity: Optional[Dict[int, int]] = None,
    granularity: str = "weekly",
    horizon: int = 12,
    penalty_cost: float = 10.0,
    alternate_line: bool = False,
) -> PlanningModel:
    """Line_A (optionally Line_B as alternate) with operation OP1."""
    model = PlanningModel(
        planning_start_date=PLANNING_START,
        granularity=granularity,
        horizon=horizon,
        clock=clock,
    )
    if capacity is None:
        capacity = {b: 5 for b in range(horizon)}
    model.add_line_restriction(LineRestriction("Line_A", penalty_cost=penalty_cost, capacity=capacity))
    alternates = ()
    if alternate_line:
        model.add_line_restriction(LineRestriction("Line_B", penalty_cost=penalty_cost, capacity=dict(capacity)))
        alternates = ("Line_B",)
    model.add_operation(Operation("OP1", primary_line="Line_A", alternate_lines=alternates))
    return model


def add_order(
    model: PlanningModel,
    number: str,
    promise_offset_days: int = 0,
    quantity: int = 5,
    priority: str = "High",
    operations: Sequence[str] = ("OP1",),
    product_id: str = "P1",
    components: Optional[Dict[str, int]] = None,
) -> SalesOrder:
    return model.add_sales_order(SalesOrder(
        order_number=number,
        product_id=product_id,
        promise_date=PLANNING_START + timedelta(days=promise_offset_days),
        quantity=quantity,
        customer_priority=priority,
        operations=tuple(operations),
        components=components or {},
    ))


@pytest.fixture
def single_order_model(clock) -> PlanningModel:
    """Line_A with 5 units in buckets 0 and 1, one High order of 5 promised in bucket 0."""
    model = build_model(clock, capacity={0: 5, 1: 5}, horizon=2)
    add_order(model, "SO1", promise_offset_days=0, quantity=5, priority="High")
    return model


@pytest.fixture
def sample_model(clock) -> PlanningModel:
    model = PlanningModel(planning_start_date=PLANNING_START, clock=clock)
    model.load_sample_data(order_count=15, seed=3)
    return model
