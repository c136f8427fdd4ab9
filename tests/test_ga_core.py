from datetime import timedelta

import numpy as np
import pytest

from conftest import PLANNING_START, FakeClock, add_order, build_model
from orplan.ga import (
    CapacityValidationError,
    FitnessBreakdown,
    GAConfig,
    GeneticOptimizer,
    Individual,
    OptimizationCancelled,
    OrderAssignment,
    Population,
)


def small_config(**overrides) -> GAConfig:
    params = dict(population_size=6, generations=4, seed=11)
    params.update(overrides)
    return GAConfig(**params)


# ============================================================================
# Configuration / gating
# ============================================================================

def test_optimizer_refuses_model_failing_validation(clock):
    model = build_model(clock, capacity={0: 0, 1: 0}, horizon=2)
    add_order(model, "SO1")
    assert not model.validate_capacity().ok
    with pytest.raises(CapacityValidationError) as excinfo:
        GeneticOptimizer(model, small_config())
    assert not excinfo.value.validation.ok


@pytest.mark.parametrize("overrides", [
    {"population_size": 0},
    {"generations": 0},
    {"mutation_rate": 1.5},
    {"crossover_rate": -0.1},
    {"tournament_size": 0},
    {"n_jobs": 0},
])
def test_invalid_config_rejected(single_order_model, overrides):
    with pytest.raises(ValueError):
        GeneticOptimizer(single_order_model, small_config(**overrides))


def test_optimizer_runs_on_its_own_copy_of_the_model(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config())
    assert optimizer.model is not single_order_model

    add_order(single_order_model, "SO_LATE")
    single_order_model.line_restrictions["Line_A"].capacity.update({0: 0, 1: 0})
    assert not single_order_model.validate_capacity().ok

    result = optimizer.optimize()
    assert result.best_solution.order_numbers == ["SO1"]
    assert result.best_breakdown.severe_violations == 0
    assert result.final_fitness == 100050
    assert optimizer.model.capacity_of("Line_A", 0) == 5


def test_granularity_dependent_defaults(clock):
    weekly = GeneticOptimizer(build_model(clock), small_config())
    daily = GeneticOptimizer(build_model(clock, granularity="daily", horizon=30), small_config())
    assert weekly.timing_variance == 3
    assert daily.timing_variance == 7
    assert not weekly.evaluator.enable_under_utilization
    assert daily.evaluator.enable_under_utilization
    assert weekly.fallback_offset == 1
    assert daily.fallback_offset == 7


# ============================================================================
# Construction
# ============================================================================

def test_search_order_alternates_around_target():
    assert list(GeneticOptimizer._search_order(5, 3, 7)) == [5, 4, 6, 3, 7]
    assert list(GeneticOptimizer._search_order(2, 0, 3)) == [2, 1, 3, 0]
    assert list(GeneticOptimizer._search_order(9, 3, 5)) == [5, 4, 3]


def test_priority_ranks(clock):
    model = build_model(clock)
    add_order(model, "SO1", priority="Low")
    add_order(model, "SO2", priority="Critical")
    add_order(model, "SO3", priority="Medium")
    add_order(model, "SO4", priority="High")
    ranks = GeneticOptimizer(model, small_config()).priority_ranks()
    assert ranks == {"Critical": 0, "High": 1, "Medium": 2, "Low": 3}


def test_strict_priorities_are_placed_first(clock):
    model = build_model(clock, horizon=4)
    add_order(model, "SO1", priority="Low")
    add_order(model, "SO2", priority="Critical")
    ind = GeneticOptimizer(model, small_config()).create_individual()
    assert ind.order_numbers == ["SO1", "SO2"]
    assert ind["SO2"].bucket == 0
    assert ind["SO1"].bucket == 1
    assert ind["SO1"].operations == {"OP1": "Line_A"}


def test_infeasible_order_falls_back_to_target(clock):
    model = build_model(clock, capacity={0: 5}, horizon=1)
    add_order(model, "SO1")
    add_order(model, "SO2")
    ind = GeneticOptimizer(model, small_config()).create_individual()
    assert ind["SO1"].bucket == 0
    assert ind["SO2"].bucket == 0
    assert ind["SO2"].operations == {"OP1": "Line_A"}


def test_target_bucket_before_calendar_uses_fallback_offset():
    clock = FakeClock(PLANNING_START - timedelta(days=5))
    model = build_model(clock)
    order = add_order(model, "SO1", promise_offset_days=-3)
    optimizer = GeneticOptimizer(model, small_config())
    assert model.calendar.bucket_of(order.promise_date) == -1
    assert optimizer.target_bucket(order) == 1


def test_every_order_is_assigned(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config())
    pop = optimizer.init_population()
    assert pop.size == 6
    for ind in pop.individuals:
        assert ind.order_numbers == list(sample_model.sales_orders)


# ============================================================================
# Operators
# ============================================================================

def _uniform(numbers, bucket):
    return Individual(genes={n: OrderAssignment(bucket, {"OP1": "Line_A"}) for n in numbers})


def test_single_point_crossover(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config(crossover_rate=1.0))
    numbers = ["A", "B", "C", "D"]
    p1, p2 = _uniform(numbers, 0), _uniform(numbers, 1)
    for _ in range(10):
        c1, c2 = optimizer.crossover(p1, p2)
        buckets1 = [c1[n].bucket for n in numbers]
        buckets2 = [c2[n].bucket for n in numbers]
        assert buckets1[0] == 0 and buckets1[-1] == 1
        assert buckets1 == sorted(buckets1)
        assert buckets2 == [1 - b for b in buckets1]
        assert c1["A"] is not p1["A"]


def test_crossover_skipped_returns_copies(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config(crossover_rate=0.0))
    p1, p2 = _uniform(["A", "B"], 0), _uniform(["A", "B"], 1)
    c1, c2 = optimizer.crossover(p1, p2)
    assert c1.to_dict() == p1.to_dict()
    assert c2.to_dict() == p2.to_dict()
    assert c1 is not p1


def test_tournament_prefers_fittest(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config(tournament_size=200))
    inds = [Individual(fitness=f) for f in (1.0, 5.0, 3.0)]
    assert optimizer.tournament_select(Population(inds)) is inds[1]


def test_mutation_frees_own_capacity_before_searching(single_order_model):
    config = small_config(mutation_rate=1.0, promise_date_preference=1.0)
    optimizer = GeneticOptimizer(single_order_model, config)
    ind = Individual(genes={"SO1": OrderAssignment(0, {"OP1": "Line_A"})}, fitness=1.0)
    optimizer.mutate(ind)
    assert ind["SO1"].bucket == 0
    assert ind["SO1"].operations == {"OP1": "Line_A"}
    assert ind.fitness is None


def test_mutation_keeps_orders_within_horizon(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config(mutation_rate=1.0))
    ind = optimizer.create_individual()
    optimizer.mutate(ind)
    assert ind.order_numbers == list(sample_model.sales_orders)
    for number, gene in ind.items():
        assert 0 <= gene.bucket < sample_model.n_buckets
        assert set(gene.operations) == set(sample_model.sales_orders[number].operations)


# ============================================================================
# Generational loop
# ============================================================================

def test_single_order_scenario(single_order_model):
    result = GeneticOptimizer(single_order_model, small_config()).optimize()
    assert result.best_solution["SO1"].bucket == 0
    assert result.best_breakdown.capacity_penalty == 0
    assert result.best_breakdown.timing_bonus == 50
    assert result.final_fitness == 100050
    assert len(result.fitness_history) == 4


def test_capacity_overflow_scenario(clock):
    model = build_model(clock, capacity={0: 5}, horizon=1)
    add_order(model, "SO1")
    add_order(model, "SO2")
    result = GeneticOptimizer(model, small_config()).optimize()
    assert result.best_breakdown.capacity_penalty > 0
    assert result.final_fitness < 100050


def test_fitness_history_is_non_decreasing(sample_model):
    result = GeneticOptimizer(sample_model, small_config(population_size=10, generations=6)).optimize()
    history = result.fitness_history
    assert len(history) == 6
    assert all(b >= a for a, b in zip(history, history[1:]))
    assert result.final_fitness == history[-1]
    assert all(f >= 0 for f in history)
    assert len(result.history_stats) == 6
    assert result.generations_run == 6


def test_same_seed_same_result(sample_model):
    first = GeneticOptimizer(sample_model, small_config()).optimize()
    second = GeneticOptimizer(sample_model, small_config()).optimize()
    assert first.fitness_history == second.fitness_history
    assert first.best_solution.to_dict() == second.best_solution.to_dict()


def test_parallel_evaluation_matches_sequential(sample_model):
    sequential = GeneticOptimizer(sample_model, small_config()).optimize()
    parallel = GeneticOptimizer(sample_model, small_config(n_jobs=2, batch_size=2)).optimize()
    assert np.allclose(sequential.fitness_history, parallel.fitness_history)


def test_evaluate_returns_breakdown(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config())
    breakdown = optimizer.evaluate(optimizer.create_individual())
    assert isinstance(breakdown, FitnessBreakdown)
    assert breakdown.fitness == 100050


def test_result_to_dict(single_order_model):
    data = GeneticOptimizer(single_order_model, small_config()).optimize().to_dict()
    assert data["best_solution"] == {"SO1": {"bucket": 0, "operations_assignment": {"OP1": "Line_A"}}}
    assert data["final_fitness"] == 100050
    assert data["best_breakdown"]["on_time_orders"] == 1


# ============================================================================
# Cancellation
# ============================================================================

def test_cancel_before_start(single_order_model):
    optimizer = GeneticOptimizer(single_order_model, small_config())
    optimizer.cancel()
    optimizer.cancel()
    assert optimizer.cancelled
    with pytest.raises(OptimizationCancelled):
        optimizer.optimize()


def test_cancel_during_run(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config(generations=20))
    seen = []

    def on_generation(pop):
        seen.append(pop.generation)
        if pop.generation == 1:
            optimizer.cancel()

    with pytest.raises(OptimizationCancelled):
        optimizer.optimize(callback=on_generation)
    assert seen == [0, 1]


def test_cancel_during_parallel_evaluation(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config(n_jobs=2, batch_size=1))
    pop = optimizer.init_population()
    optimizer.cancel()
    with pytest.raises(OptimizationCancelled):
        optimizer._evaluate_population(pop)


def test_cancel_while_building_initial_population(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config())
    create_individual = optimizer.create_individual
    built = []

    def create_then_cancel():
        built.append(create_individual())
        if len(built) == 2:
            optimizer.cancel()
        return built[-1]

    optimizer.create_individual = create_then_cancel
    with pytest.raises(OptimizationCancelled):
        optimizer.optimize()
    assert len(built) == 2


def test_cancel_while_breeding_next_generation(sample_model):
    optimizer = GeneticOptimizer(sample_model, small_config(population_size=10))
    tournament_select = optimizer.tournament_select
    calls = []

    def select_then_cancel(pop):
        calls.append(pop.generation)
        if len(calls) == 3:
            optimizer.cancel()
        return tournament_select(pop)

    optimizer.tournament_select = select_then_cancel
    with pytest.raises(OptimizationCancelled):
        optimizer.optimize()
    # the pair in progress finishes; the next loop pass stops the run
    assert len(calls) == 4
    assert calls == [0, 0, 0, 0]
