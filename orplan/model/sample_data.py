"""
Sample forklift factory.

Five products, six line restrictions, four routed operations, six
purchased components and a random order book. Capacity and availability
follow the granularity of the target model:

- weekly: 5-19 units per line, 50-199 units per component
- daily: weekends closed, ~5% maintenance days, ~10% reduced days (1-3),
  otherwise 3-7 units; components 0 on weekends and ~10% of days,
  otherwise 10-39
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np

from orplan.schema import (
    ComponentAvailability,
    LineRestriction,
    Operation,
    PenaltyRule,
    Product,
    SalesOrder,
)

if TYPE_CHECKING:
    from orplan.model.planning_model import PlanningModel


SAMPLE_PRODUCTS = [
    ("FL001", "Electric Forklift 2T", "2-ton electric forklift with 3m lift height"),
    ("FL002", "Diesel Forklift 3T", "3-ton diesel forklift for outdoor use"),
    ("FL003", "Electric Reach Truck", "Electric reach truck for warehouse operations"),
    ("FL004", "Diesel Forklift 5T", "5-ton heavy-duty diesel forklift"),
    ("FL005", "Electric Pallet Jack", "Electric pallet jack for light operations"),
]

SAMPLE_LINES = [
    ("Assembly_A", 500.0),
    ("Assembly_B", 600.0),
    ("Welding_Line1", 300.0),
    ("Welding_Line2", 350.0),
    ("Paint_Line", 400.0),
    ("Testing_Station", 200.0),
]

SAMPLE_OPERATIONS = [
    ("0010", "Welding_Line1", ("Welding_Line2",)),
    ("0020", "Assembly_A", ("Assembly_B",)),
    ("0030", "Paint_Line", ()),
    ("0040", "Testing_Station", ()),
]

SAMPLE_COMPONENTS = ["Engine", "Chassis", "Hydraulics", "Electronics", "Tires", "Battery"]

# priority -> (late_delivery_penalty, no_fulfillment_penalty)
SAMPLE_PENALTIES = {
    "High": (100.0, 1000.0),
    "Medium": (50.0, 500.0),
    "Low": (25.0, 200.0),
}

ELECTRIC_PRODUCTS = {"FL001", "FL003", "FL005"}
LIGHT_HYDRAULICS_PRODUCTS = {"FL001", "FL003"}


def _line_capacity(model: "PlanningModel", rng: np.random.Generator) -> Dict[int, int]:
    capacity = {}
    for bucket in model.calendar:
        if not model.calendar.is_daily:
            capacity[bucket.index] = int(rng.integers(5, 20))
            continue
        if bucket.is_weekend:
            capacity[bucket.index] = 0
            continue
        draw = rng.random()
        if draw < 0.05:
            capacity[bucket.index] = 0                          # maintenance
        elif draw < 0.15:
            capacity[bucket.index] = int(rng.integers(1, 4))    # reduced
        else:
            capacity[bucket.index] = int(rng.integers(3, 8))
    return capacity


def _component_availability(model: "PlanningModel", rng: np.random.Generator) -> Dict[int, int]:
    availability = {}
    for bucket in model.calendar:
        if not model.calendar.is_daily:
            availability[bucket.index] = int(rng.integers(50, 200))
        elif bucket.is_weekend or rng.random() < 0.1:
            availability[bucket.index] = 0
        else:
            availability[bucket.index] = int(rng.integers(10, 40))
    return availability


def _component_requirements(product_id: str, qty: int) -> Dict[str, int]:
    return {
        "Engine": qty,
        "Chassis": qty,
        "Hydraulics": qty if product_id in LIGHT_HYDRAULICS_PRODUCTS else qty * 2,
        "Electronics": qty,
        "Tires": qty * 4,
        "Battery": qty if product_id in ELECTRIC_PRODUCTS else 0,
    }


def load_sample_data(
    model: "PlanningModel",
    order_count: int = 50,
    seed: Optional[int] = None,
) -> None:
    """Fill `model` with the sample factory and `order_count` random orders."""
    rng = np.random.default_rng(seed)
    model.logger.info(
        f"Loading sample forklift data ({model.calendar.granularity.value} capacity)..."
    )

    for product_id, name, description in SAMPLE_PRODUCTS:
        model.add_product(Product(product_id=product_id, name=name, description=description))

    for name, penalty_cost in SAMPLE_LINES:
        model.add_line_restriction(LineRestriction(
            name=name,
            validity=True,
            penalty_cost=penalty_cost,
            capacity=_line_capacity(model, rng),
        ))

    for operation_id, primary, alternates in SAMPLE_OPERATIONS:
        model.add_operation(Operation(
            operation_id=operation_id,
            primary_line=primary,
            alternate_lines=alternates,
        ))

    for component_id in SAMPLE_COMPONENTS:
        model.add_component_availability(ComponentAvailability(
            component_id=component_id,
            availability=_component_availability(model, rng),
        ))

    for priority, (late, no_fulfillment) in SAMPLE_PENALTIES.items():
        for product_id, _, _ in SAMPLE_PRODUCTS:
            model.add_penalty_rule(PenaltyRule(
                customer_priority=priority,
                product_id=product_id,
                late_delivery_penalty=late,
                no_fulfillment_penalty=no_fulfillment,
            ))

    product_ids = [p[0] for p in SAMPLE_PRODUCTS]
    priorities = list(SAMPLE_PENALTIES)
    operation_ids = tuple(op[0] for op in SAMPLE_OPERATIONS)
    for i in range(1, order_count + 1):
        product_id = product_ids[int(rng.integers(len(product_ids)))]
        if model.calendar.is_daily:
            days_out = int(rng.integers(7, 84))
        else:
            days_out = 7 * int(rng.integers(1, 13))
        qty = int(rng.integers(1, 6))
        revenue = float(rng.uniform(15000, 50000)) * qty
        model.add_sales_order(SalesOrder(
            order_number=f"SO{i:04d}",
            product_id=product_id,
            promise_date=model.planning_start_date + timedelta(days=days_out),
            quantity=qty,
            revenue=revenue,
            cost=revenue * float(rng.uniform(0.6, 0.8)),
            customer_priority=priorities[int(rng.integers(len(priorities)))],
            operations=operation_ids,
            components=_component_requirements(product_id, qty),
        ))

    model.derive_used_priorities()
    model.logger.info(f"Loaded {len(model.sales_orders)} sample sales orders")
