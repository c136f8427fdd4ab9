"""
Capacity tracker.

Scratch copy of the remaining capacity of every valid line in every bucket.
Construction and mutation place and remove orders on it to run a best-fit
search without touching the PlanningModel. A tracker belongs to exactly one
construction or mutation pass and is never shared between runs or threads.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Mapping, Optional

import numpy as np

from orplan.schema import SalesOrder

if TYPE_CHECKING:
    from orplan.ga.individual import Individual
    from orplan.model.planning_model import PlanningModel


class CapacityTracker:
    """Line -> per-bucket remaining capacity (numpy int64 rows)."""

    def __init__(self, remaining: Dict[str, np.ndarray]):
        self._remaining = remaining

    @classmethod
    def from_model(cls, model: "PlanningModel") -> "CapacityTracker":
        """Full capacity of every line whose restriction is valid."""
        remaining = {
            name: model.capacity_row(name)
            for name, restriction in model.line_restrictions.items()
            if restriction.validity
        }
        return cls(remaining)

    @classmethod
    def from_individual(cls, model: "PlanningModel", individual: "Individual") -> "CapacityTracker":
        """Capacity left after placing every assignment of `individual`."""
        tracker = cls.from_model(model)
        for order_number, gene in individual.items():
            order = model.sales_orders.get(order_number)
            if order is not None:
                tracker.place(order, gene.bucket, gene.operations)
        return tracker

    @property
    def lines(self) -> List[str]:
        return list(self._remaining)

    def available(self, line: str, bucket: int) -> int:
        """Remaining capacity; 0 for untracked lines or out-of-range buckets."""
        row = self._remaining.get(line)
        if row is None or not 0 <= bucket < row.shape[0]:
            return 0
        return int(row[bucket])

    def place(self, order: SalesOrder, bucket: int, assignment: Mapping[str, str]) -> None:
        """Consume `order.quantity` on every assigned line at `bucket`."""
        self._apply(bucket, assignment, -order.quantity)

    def remove(self, order: SalesOrder, bucket: int, assignment: Mapping[str, str]) -> None:
        """Give back what `place` consumed; exact inverse of `place`."""
        self._apply(bucket, assignment, order.quantity)

    def _apply(self, bucket: int, assignment: Mapping[str, str], delta: int) -> None:
        for line in assignment.values():
            row = self._remaining.get(line)
            if row is not None and 0 <= bucket < row.shape[0]:
                row[bucket] += delta

    def find_lines(
        self,
        model: "PlanningModel",
        order: SalesOrder,
        bucket: int,
    ) -> Optional[Dict[str, str]]:
        """
        Pick a line for every operation of `order` at `bucket`.

        Each operation takes its primary line if enough capacity remains for
        the full order quantity, else the first alternate that has it.
        Capacity claimed by earlier operations of the same order counts.
        Returns None when some operation cannot be placed, including
        operations that reference no known operation.
        """
        qty = order.quantity
        claimed: Dict[str, int] = {}
        assignment: Dict[str, str] = {}
        for operation_id in order.operations:
            operation = model.operations.get(operation_id)
            if operation is None:
                return None
            for line in operation.candidate_lines:
                if self.available(line, bucket) - claimed.get(line, 0) >= qty:
                    assignment[operation_id] = line
                    claimed[line] = claimed.get(line, 0) + qty
                    break
            else:
                return None
        return assignment

    def copy(self) -> "CapacityTracker":
        return CapacityTracker({line: row.copy() for line, row in self._remaining.items()})

    def to_dict(self) -> Dict[str, List[int]]:
        return {line: row.tolist() for line, row in self._remaining.items()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CapacityTracker):
            return NotImplemented
        if self._remaining.keys() != other._remaining.keys():
            return False
        return all(np.array_equal(row, other._remaining[line]) for line, row in self._remaining.items())
