"""
Individual representation.

One individual is a complete schedule: for every order, the bucket it is
produced in and the line chosen for each of its operations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass
class OrderAssignment:
    """Gene: bucket index plus operation -> line mapping"""
    bucket: int
    operations: Dict[str, str] = field(default_factory=dict)

    def copy(self) -> "OrderAssignment":
        return OrderAssignment(bucket=self.bucket, operations=dict(self.operations))

    def to_dict(self) -> Dict[str, Any]:
        return {"bucket": self.bucket, "operations_assignment": dict(self.operations)}


@dataclass
class Individual:
    """Chromosome: order number -> OrderAssignment, in a stable key order"""
    genes: Dict[str, OrderAssignment] = field(default_factory=dict)
    fitness: Optional[float] = None   # None until scored

    def __len__(self) -> int:
        return len(self.genes)

    def __contains__(self, order_number: str) -> bool:
        return order_number in self.genes

    def __getitem__(self, order_number: str) -> OrderAssignment:
        return self.genes[order_number]

    def __setitem__(self, order_number: str, assignment: OrderAssignment) -> None:
        self.genes[order_number] = assignment
        self.fitness = None

    def items(self) -> Iterator[Tuple[str, OrderAssignment]]:
        return iter(self.genes.items())

    @property
    def order_numbers(self) -> List[str]:
        return list(self.genes)

    def copy(self) -> "Individual":
        """Deep copy (genes and operation maps are not shared)."""
        return Individual(
            genes={k: g.copy() for k, g in self.genes.items()},
            fitness=self.fitness,
        )

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {k: g.to_dict() for k, g in self.genes.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, Any]]) -> "Individual":
        genes = {}
        for order_number, gene in data.items():
            genes[order_number] = OrderAssignment(
                bucket=int(gene["bucket"]),
                operations=dict(gene.get("operations_assignment", {})),
            )
        return cls(genes=genes)
