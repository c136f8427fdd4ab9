"""
PlanningModel JSON snapshots.

`PlanningModel.to_dict()` produces the snapshot; `model_from_dict` builds an
independent model from it. Capacity and availability keys are bucket
indices written as strings.
"""

import json
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from orplan.model.planning_model import PlanningModel
from orplan.schema import (
    ComponentAvailability,
    LineRestriction,
    Operation,
    PenaltyRule,
    PriorityDeliveryCriteria,
    Product,
    SalesOrder,
    UnderUtilizationConfig,
)


def model_from_dict(
    data: Dict[str, Any],
    clock: Optional[Callable[[], date]] = None,
    log_level: str = "INFO",
) -> PlanningModel:
    """Rebuild a PlanningModel from a `to_dict()` snapshot."""
    model = PlanningModel(
        planning_start_date=data["planning_start_date"],
        min_early_delivery_days=data.get("min_early_delivery_days", 7),
        granularity=data.get("granularity", "weekly"),
        horizon=data.get("horizon"),
        under_utilization=UnderUtilizationConfig(**data.get("under_utilization", {})),
        clock=clock,
        log_level=log_level,
    )

    for raw in data.get("products", []):
        model.add_product(Product(**raw))

    for raw in data.get("line_restrictions", []):
        model.add_line_restriction(LineRestriction(
            name=raw["name"],
            validity=raw.get("validity", True),
            penalty_cost=raw.get("penalty_cost", 0.0),
            capacity=raw.get("capacity", {}),
        ))

    for raw in data.get("operations", []):
        model.add_operation(Operation(
            operation_id=raw["operation_id"],
            primary_line=raw["primary_line"],
            alternate_lines=tuple(raw.get("alternate_lines", ())),
        ))

    for raw in data.get("component_availability", []):
        model.add_component_availability(ComponentAvailability(
            component_id=raw["component_id"],
            availability=raw.get("availability", {}),
        ))

    for raw in data.get("penalty_rules", []):
        model.add_penalty_rule(PenaltyRule(**raw))

    for raw in data.get("priority_delivery_criteria", []):
        model.add_priority_delivery_criteria(PriorityDeliveryCriteria(**raw))

    for raw in data.get("sales_orders", []):
        model.add_sales_order(SalesOrder(
            order_number=raw["order_number"],
            product_id=raw["product_id"],
            promise_date=date.fromisoformat(raw["promise_date"]),
            quantity=raw["quantity"],
            revenue=raw.get("revenue", 0.0),
            cost=raw.get("cost", 0.0),
            customer_priority=raw.get("customer_priority", "Medium"),
            operations=tuple(raw.get("operations", ())),
            components={k: int(v) for k, v in raw.get("components", {}).items()},
        ))

    model.derive_used_priorities()
    return model


def save_model(model: PlanningModel, path: Union[str, Path]) -> Path:
    """Write a JSON snapshot of `model`; returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(model.to_dict(), f, ensure_ascii=False, indent=2)
    return path


def load_model(
    path: Union[str, Path],
    clock: Optional[Callable[[], date]] = None,
    log_level: str = "INFO",
) -> PlanningModel:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return model_from_dict(data, clock=clock, log_level=log_level)
