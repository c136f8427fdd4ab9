"""
ORPLAN - capacity-aware order planning.

Assigns a backlog of sales orders to time buckets and production lines with
a genetic algorithm.
"""

__version__ = "0.1.0"
