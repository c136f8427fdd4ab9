from pathlib import Path

import pytest

from orplan.ga import FitnessConfig, GAConfig
from orplan.io import config_from_dict, load_config, load_model, model_from_dict, save_model
from orplan.schema import PriorityDeliveryCriteria, UnderUtilizationConfig


REPO_ROOT = Path(__file__).resolve().parents[1]


def test_model_snapshot_round_trip(sample_model, clock, tmp_path):
    sample_model.add_priority_delivery_criteria(
        PriorityDeliveryCriteria("Gold", max_delay_days=2, penalty_multiplier=4.0)
    )
    path = save_model(sample_model, tmp_path / "snap" / "model.json")
    assert path.exists()
    loaded = load_model(path, clock=clock)
    assert loaded.to_dict() == sample_model.to_dict()
    assert loaded.priority_criteria_for("Gold").max_delay_days == 2
    assert loaded.capacity_row("Paint_Line").tolist() == sample_model.capacity_row("Paint_Line").tolist()


def test_model_from_dict_minimal(clock):
    model = model_from_dict({
        "planning_start_date": "2025-01-06",
        "granularity": "daily",
        "horizon": 10,
        "line_restrictions": [{"name": "L1", "capacity": {"2025-01-07": 4}}],
        "operations": [{"operation_id": "OP1", "primary_line": "L1"}],
        "sales_orders": [{
            "order_number": "SO1",
            "product_id": "P1",
            "promise_date": "2025-01-10",
            "quantity": 2,
            "customer_priority": "Urgent",
            "operations": ["OP1"],
        }],
    }, clock=clock)
    assert model.n_buckets == 10
    assert model.capacity_of("L1", 1) == 4
    assert model.sales_orders["SO1"].operations == ("OP1",)
    assert "Urgent" in model.priority_delivery_criteria


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "optimizer.yaml"
    path.write_text(
        "ga:\n"
        "  population_size: 20\n"
        "  seed: 3\n"
        "fitness:\n"
        "  severe_violation_penalty: 7000\n"
        "under_utilization:\n"
        "  target_utilization_rate: 0.75\n",
        encoding="utf-8",
    )
    ga_config, fitness_config, uu_config = load_config(path)
    assert ga_config.population_size == 20
    assert ga_config.seed == 3
    assert ga_config.generations == GAConfig().generations
    assert fitness_config.severe_violation_penalty == 7000
    assert uu_config.target_utilization_rate == 0.75


def test_empty_config_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == (GAConfig(), FitnessConfig(), UnderUtilizationConfig())


@pytest.mark.parametrize("data", [
    {"ga": {"populaton_size": 10}},
    {"genetic": {}},
    {"fitness": ["not", "a", "mapping"]},
    {"ga": {"mutation_rate": 2.0}},
])
def test_bad_config_rejected(data):
    with pytest.raises(ValueError):
        config_from_dict(data)


def test_shipped_config_loads():
    ga_config, fitness_config, uu_config = load_config(REPO_ROOT / "configs" / "optimizer.yaml")
    assert ga_config.seed == 42
    assert fitness_config.past_bucket_penalty == 100000.0
    assert uu_config.near_term_days == 30
