"""
Optimizer configuration from YAML.

Layout (every section and key optional):

    ga:
      population_size: 100
      generations: 50
    fitness:
      severe_violation_penalty: 5000
    under_utilization:
      target_utilization_rate: 0.7
"""

from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Tuple, Type, TypeVar, Union

import yaml

from orplan.ga.evaluator import FitnessConfig
from orplan.ga.ga_core import GAConfig
from orplan.schema import UnderUtilizationConfig


SECTIONS = ("ga", "fitness", "under_utilization")

T = TypeVar("T")


def _build(cls: Type[T], section: str, raw: Any) -> T:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"config section '{section}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"unknown keys in config section '{section}': {', '.join(unknown)}")
    return cls(**raw)


def config_from_dict(data: Dict[str, Any]) -> Tuple[GAConfig, FitnessConfig, UnderUtilizationConfig]:
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError("config root must be a mapping")
    unknown = sorted(set(data) - set(SECTIONS))
    if unknown:
        raise ValueError(f"unknown config sections: {', '.join(unknown)}")

    ga_config = _build(GAConfig, "ga", data.get("ga"))
    ga_config.validate()
    return (
        ga_config,
        _build(FitnessConfig, "fitness", data.get("fitness")),
        _build(UnderUtilizationConfig, "under_utilization", data.get("under_utilization")),
    )


def load_config(path: Union[str, Path]) -> Tuple[GAConfig, FitnessConfig, UnderUtilizationConfig]:
    """Load (GAConfig, FitnessConfig, UnderUtilizationConfig) from a YAML file."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return config_from_dict(data)
