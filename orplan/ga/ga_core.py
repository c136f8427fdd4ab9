"""
GA core

Genetic search over order -> (bucket, lines) assignments:
- capacity-aware greedy construction of the initial population
- tournament selection
- single-point crossover over the order key list
- capacity-aware / random bucket mutation plus line re-pick
- elitist generational loop with cooperative cancellation
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import numpy as np
from joblib import Parallel, delayed

from orplan.ga.evaluator import FitnessBreakdown, FitnessConfig, FitnessEvaluator
from orplan.ga.individual import Individual, OrderAssignment
from orplan.ga.tracker import CapacityTracker
from orplan.log import setup_logger
from orplan.model.planning_model import PlanningModel
from orplan.schema import CapacityValidation, SalesOrder


# ============================================================================
# Errors
# ============================================================================

class OptimizationCancelled(RuntimeError):
    """Raised at the first checkpoint after cancel(); the run has no result."""


class CapacityValidationError(ValueError):
    """The model failed capacity validation; optimization must not start."""

    def __init__(self, validation: CapacityValidation):
        self.validation = validation
        super().__init__("; ".join(validation.critical_issues) or "capacity validation failed")


# ============================================================================
# GA configuration
# ============================================================================

@dataclass
class GAConfig:
    """GA parameters"""
    population_size: int = 100
    generations: int = 50
    mutation_rate: float = 0.1
    crossover_rate: float = 0.8
    tournament_size: int = 3
    elitism_count: int = 1
    seed: Optional[int] = None

    # search / mutation
    promise_date_preference: float = 0.7     # probability a mutation is capacity-aware
    timing_variance: Optional[int] = None    # search margin in buckets; None -> 3 weekly / 7 daily
    fallback_offset_days: int = 7            # target for orders promised before the calendar
    random_mutation_window_days: int = 140
    random_mutation_attempts: int = 10
    operation_mutation_factor: float = 0.5   # line re-pick rate = mutation_rate * factor

    # fitness
    perfect_timing_bonus: float = 50.0
    unnecessary_delay_penalty: float = 100.0
    enable_unnecessary_delay_penalty: bool = False
    enable_under_utilization_penalty: Optional[bool] = None   # None -> on for daily calendars
    under_utilization_weight: float = 0.3

    # execution
    n_jobs: int = 1
    batch_size: int = 16
    log_level: str = "INFO"

    def validate(self) -> None:
        if self.population_size < 1:
            raise ValueError(f"population_size must be >= 1, got {self.population_size}")
        if self.generations < 1:
            raise ValueError(f"generations must be >= 1, got {self.generations}")
        if self.tournament_size < 1:
            raise ValueError(f"tournament_size must be >= 1, got {self.tournament_size}")
        if not 0 <= self.elitism_count <= self.population_size:
            raise ValueError("elitism_count must be in [0, population_size]")
        for name in ("mutation_rate", "crossover_rate", "promise_date_preference"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {value}")
        if self.timing_variance is not None and self.timing_variance < 0:
            raise ValueError(f"timing_variance must be >= 0, got {self.timing_variance}")
        if self.random_mutation_attempts < 1:
            raise ValueError("random_mutation_attempts must be >= 1")
        if self.n_jobs == 0:
            raise ValueError("n_jobs must be non-zero")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")


# ============================================================================
# Population / result
# ============================================================================

@dataclass
class Population:
    """Population"""
    individuals: List[Individual] = field(default_factory=list)
    generation: int = 0

    @property
    def size(self) -> int:
        return len(self.individuals)

    @property
    def best(self) -> Individual:
        return max(self.individuals, key=lambda x: x.fitness)

    @property
    def worst(self) -> Individual:
        return min(self.individuals, key=lambda x: x.fitness)

    def stats(self) -> dict:
        fits = [ind.fitness for ind in self.individuals]
        return {
            "gen": self.generation,
            "best": float(max(fits)),
            "worst": float(min(fits)),
            "mean": float(np.mean(fits)),
            "std": float(np.std(fits)),
        }


@dataclass
class OptimizationResult:
    """Best schedule found plus run history"""
    best_solution: Individual
    fitness_history: List[float]
    final_fitness: float
    generations_run: int = 0
    elapsed_sec: float = 0.0
    history_stats: List[Dict[str, float]] = field(default_factory=list)
    best_breakdown: Optional[FitnessBreakdown] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_solution": self.best_solution.to_dict(),
            "fitness_history": list(self.fitness_history),
            "final_fitness": self.final_fitness,
            "generations_run": self.generations_run,
            "elapsed_sec": self.elapsed_sec,
            "history_stats": list(self.history_stats),
            "best_breakdown": self.best_breakdown.to_dict() if self.best_breakdown else None,
        }


# ============================================================================
# GA core
# ============================================================================

class GeneticOptimizer:
    """
    Genetic optimizer for one PlanningModel.

    The optimizer copies the model on construction and only reads that copy.
    Capacity validation runs on the copy in the constructor; a model that fails it raises
    CapacityValidationError and no optimizer is created.
    """

    def __init__(
        self,
        model: PlanningModel,
        config: Optional[GAConfig] = None,
        fitness_config: Optional[FitnessConfig] = None,
    ):
        self.config = config or GAConfig()
        self.config.validate()
        self.logger = setup_logger("orplan.ga", self.config.log_level)

        # private snapshot; edits to the caller's model after this point are not seen
        model = model.copy()
        validation = model.validate_capacity()
        if not validation.ok:
            for issue in validation.critical_issues:
                self.logger.error(issue)
            raise CapacityValidationError(validation)

        self.model = model
        self.rng = np.random.default_rng(self.config.seed)
        self._cancel_event = threading.Event()

        calendar = model.calendar
        default_variance = 7 if calendar.is_daily else 3
        self.timing_variance = (
            default_variance if self.config.timing_variance is None else self.config.timing_variance
        )
        self.fallback_offset = calendar.days_to_buckets(self.config.fallback_offset_days)
        self.random_window = calendar.days_to_buckets(self.config.random_mutation_window_days)

        enable_uu = self.config.enable_under_utilization_penalty
        self.evaluator = FitnessEvaluator(
            model,
            config=fitness_config,
            perfect_timing_bonus=self.config.perfect_timing_bonus,
            enable_under_utilization=calendar.is_daily if enable_uu is None else enable_uu,
            under_utilization_weight=self.config.under_utilization_weight,
            unnecessary_delay_penalty=self.config.unnecessary_delay_penalty,
            enable_unnecessary_delay_penalty=self.config.enable_unnecessary_delay_penalty,
        )
        self._parallel = (
            Parallel(n_jobs=self.config.n_jobs, prefer="threads")
            if self.config.n_jobs != 1 else None
        )

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cancellation; safe to call from any thread, idempotent."""
        if not self._cancel_event.is_set():
            self.logger.info("Optimization cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _checkpoint(self) -> None:
        if self._cancel_event.is_set():
            raise OptimizationCancelled("Optimization was cancelled")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def priority_ranks(self) -> Dict[str, int]:
        """Rank of every used priority: stricter max delay first, then larger multiplier."""
        model = self.model

        def severity(priority: str) -> Tuple[int, float]:
            criteria = model.priority_criteria_for(priority)
            return criteria.max_delay_days, -criteria.penalty_multiplier

        ordered = sorted(model.used_priorities(), key=severity)
        return {priority: rank for rank, priority in enumerate(ordered)}

    def target_bucket(self, order: SalesOrder) -> int:
        """Bucket of the promise date, never before the order's earliest bucket."""
        model = self.model
        order_earliest = model.earliest_schedulable_bucket_for_order(order.order_number)
        target = model.calendar.bucket_of(order.promise_date)
        if target < 0:
            target = max(order_earliest, model.earliest_schedulable_bucket() + self.fallback_offset)
        return max(target, order_earliest)

    @staticmethod
    def _search_order(target: int, start: int, end: int) -> Iterator[int]:
        """target, target-1, target+1, target-2, ... restricted to [start, end]"""
        if start <= target <= end:
            yield target
        for offset in range(1, max(target - start, end - target) + 1):
            if start <= target - offset <= end:
                yield target - offset
            if start <= target + offset <= end:
                yield target + offset

    def find_best_bucket(
        self,
        order: SalesOrder,
        target: int,
        tracker: CapacityTracker,
    ) -> Optional[Tuple[int, Dict[str, str]]]:
        """
        Closest bucket to `target` where every operation fits.

        The window runs from the order's earliest bucket to the target plus
        the priority's maximum delay plus the timing variance, capped at the
        horizon. Returns (bucket, lines) or None.
        """
        model = self.model
        start = model.earliest_schedulable_bucket_for_order(order.order_number)
        criteria = model.priority_criteria_for(order.customer_priority)
        end = min(
            target + model.calendar.days_to_buckets(criteria.max_delay_days) + self.timing_variance,
            model.n_buckets - 1,
        )
        for bucket in self._search_order(target, start, end):
            lines = tracker.find_lines(model, order, bucket)
            if lines is not None:
                return bucket, lines
        return None

    def random_operations(self, order: SalesOrder) -> Dict[str, str]:
        """Uniformly random candidate line per known operation (capacity ignored)."""
        assignment = {}
        for operation_id in order.operations:
            operation = self.model.operations.get(operation_id)
            if operation is None:
                continue
            lines = operation.candidate_lines
            assignment[operation_id] = lines[int(self.rng.integers(len(lines)))]
        return assignment

    def create_individual(self) -> Individual:
        """Greedy capacity-aware schedule: strict priorities and early promises first."""
        model = self.model
        tracker = CapacityTracker.from_model(model)
        ranks = self.priority_ranks()
        orders = sorted(
            model.sales_orders.values(),
            key=lambda o: (ranks.get(o.customer_priority, len(ranks)), o.promise_date),
        )

        genes: Dict[str, OrderAssignment] = {}
        for order in orders:
            target = self.target_bucket(order)
            found = self.find_best_bucket(order, target, tracker)
            if found is None:
                # infeasible: keep the target, fitness pays for the overrun
                genes[order.order_number] = OrderAssignment(target, self.random_operations(order))
                self.logger.debug(f"No capacity for {order.order_number}; fallback to bucket {target}")
                continue
            bucket, lines = found
            genes[order.order_number] = OrderAssignment(bucket, lines)
            tracker.place(order, bucket, lines)

        return Individual(genes={number: genes[number] for number in model.sales_orders})

    def init_population(self) -> Population:
        individuals = []
        for _ in range(self.config.population_size):
            self._checkpoint()
            individuals.append(self.create_individual())
        return Population(individuals=individuals, generation=0)

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def tournament_select(self, pop: Population) -> Individual:
        """k uniform draws with replacement; fittest wins"""
        picks = self.rng.integers(0, pop.size, size=self.config.tournament_size)
        best = max(picks, key=lambda i: pop.individuals[i].fitness)
        return pop.individuals[int(best)]

    def crossover(self, p1: Individual, p2: Individual) -> Tuple[Individual, Individual]:
        """Single-point crossover over p1's order key list."""
        keys = p1.order_numbers
        if self.rng.random() >= self.config.crossover_rate or len(keys) < 2:
            return p1.copy(), p2.copy()

        point = int(self.rng.integers(1, len(keys)))
        head, tail = keys[:point], keys[point:]
        c1 = Individual(genes={
            **{k: p1[k].copy() for k in head},
            **{k: p2[k].copy() for k in tail},
        })
        c2 = Individual(genes={
            **{k: p2[k].copy() for k in head},
            **{k: p1[k].copy() for k in tail},
        })
        return c1, c2

    def _random_bucket(
        self,
        order: SalesOrder,
        tracker: CapacityTracker,
        earliest: int,
    ) -> Optional[Tuple[int, Dict[str, str]]]:
        low = self.model.earliest_schedulable_bucket_for_order(order.order_number)
        high = min(earliest + self.random_window, self.model.n_buckets - 1)
        if high < low:
            return None
        for _ in range(self.config.random_mutation_attempts):
            bucket = int(self.rng.integers(low, high + 1))
            lines = tracker.find_lines(self.model, order, bucket)
            if lines is not None:
                return bucket, lines
        return None

    def mutate(self, ind: Individual) -> Individual:
        """
        Mutate in place and return `ind`.

        A tracker rebuilt from the individual holds the capacity left by
        every other order, so moved orders only land where they fit. A
        failed move keeps the previous assignment.
        """
        cfg = self.config
        model = self.model
        earliest = model.earliest_schedulable_bucket()
        tracker = CapacityTracker.from_individual(model, ind)

        for number in ind.order_numbers:
            order = model.sales_orders.get(number)
            if order is None:
                continue

            if self.rng.random() < cfg.mutation_rate:
                current = ind[number]
                tracker.remove(order, current.bucket, current.operations)
                if self.rng.random() < cfg.promise_date_preference:
                    moved = self.find_best_bucket(order, self.target_bucket(order), tracker)
                else:
                    moved = self._random_bucket(order, tracker, earliest)
                if moved is not None:
                    ind[number] = OrderAssignment(*moved)
                gene = ind[number]
                tracker.place(order, gene.bucket, gene.operations)

            if self.rng.random() < cfg.mutation_rate * cfg.operation_mutation_factor:
                gene = ind[number]
                tracker.remove(order, gene.bucket, gene.operations)
                lines = tracker.find_lines(model, order, gene.bucket)
                if lines is not None:
                    gene.operations = lines
                tracker.place(order, gene.bucket, gene.operations)

        ind.fitness = None
        return ind

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, ind: Individual) -> FitnessBreakdown:
        return self.evaluator.evaluate(ind)

    def _evaluate_population(self, pop: Population) -> None:
        individuals = pop.individuals
        if self._parallel is None:
            for ind in individuals:
                self._checkpoint()
                ind.fitness = self.evaluator.fitness(ind)
            return

        size = self.config.batch_size
        for i in range(0, len(individuals), size):
            self._checkpoint()
            batch = individuals[i:i + size]
            scores = self._parallel(delayed(self.evaluator.fitness)(ind) for ind in batch)
            for ind, score in zip(batch, scores):
                ind.fitness = score

    def evolve(self, pop: Population) -> Population:
        """Next generation: elites, then selected/crossed/mutated children."""
        ranked = sorted(pop.individuals, key=lambda x: x.fitness, reverse=True)
        new_inds = [ind.copy() for ind in ranked[:self.config.elitism_count]]

        while len(new_inds) < self.config.population_size:
            self._checkpoint()
            p1 = self.tournament_select(pop)
            p2 = self.tournament_select(pop)
            c1, c2 = self.crossover(p1, p2)
            new_inds.extend([self.mutate(c1), self.mutate(c2)])

        return Population(
            individuals=new_inds[:self.config.population_size],
            generation=pop.generation + 1,
        )

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def optimize(
        self,
        callback: Optional[Callable[[Population], None]] = None,
    ) -> OptimizationResult:
        """
        Run the generational loop.

        Raises OptimizationCancelled at the first checkpoint after cancel();
        no partial result is returned in that case.
        """
        cfg = self.config
        start = time.perf_counter()
        self.logger.info(
            f"Starting genetic optimization: {len(self.model.sales_orders)} orders, "
            f"population={cfg.population_size}, generations={cfg.generations}, "
            f"{self.model.calendar.granularity.value} buckets"
        )

        pop = self.init_population()
        history: List[float] = []
        history_stats: List[Dict[str, float]] = []
        best: Optional[Individual] = None
        best_fitness = -np.inf

        for generation in range(cfg.generations):
            self._checkpoint()
            pop.generation = generation
            self._evaluate_population(pop)

            current = pop.best
            if current.fitness > best_fitness:
                best_fitness = current.fitness
                best = current.copy()
            # with elitism_count >= 1 the best-so-far equals the generation best
            history.append(float(best_fitness))
            stats = pop.stats()
            history_stats.append(stats)
            self.logger.info(
                f"Generation {generation + 1}/{cfg.generations}, "
                f"best={stats['best']:.2f}, mean={stats['mean']:.2f}, std={stats['std']:.2f}"
            )
            if callback:
                callback(pop)

            if generation < cfg.generations - 1:
                self._checkpoint()
                pop = self.evolve(pop)

        self._checkpoint()
        elapsed = time.perf_counter() - start
        self.logger.info(f"Optimization completed. Best fitness: {best_fitness:.2f} ({elapsed:.2f}s)")
        return OptimizationResult(
            best_solution=best,
            fitness_history=history,
            final_fitness=float(best_fitness),
            generations_run=cfg.generations,
            elapsed_sec=elapsed,
            history_stats=history_stats,
            best_breakdown=self.evaluate(best),
        )
