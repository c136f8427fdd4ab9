#!/usr/bin/env python3
"""
Run the genetic scheduler on a model snapshot or on the sample forklift factory.

Examples:
    python scripts/run_optimization.py --granularity daily --orders 40 --seed 7
    python scripts/run_optimization.py --model data/model.json --config configs/optimizer.yaml --json
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from pathlib import Path
from typing import Any, Dict

_script_dir = Path(__file__).parent
_python_dir = _script_dir.parent
sys.path.insert(0, str(_python_dir))

from orplan.ga import FitnessConfig, GAConfig, GeneticOptimizer
from orplan.io import load_config, load_model, save_model
from orplan.jobs import JobManager
from orplan.model import PlanningModel
from orplan.schema import JobStatus, UnderUtilizationConfig


def build_model(args: argparse.Namespace, under_utilization: UnderUtilizationConfig) -> PlanningModel:
    if args.model:
        model = load_model(args.model, log_level=args.log_level)
        model.under_utilization = under_utilization
        return model
    model = PlanningModel(
        planning_start_date=args.start_date,
        min_early_delivery_days=args.min_early_days,
        granularity=args.granularity,
        horizon=args.horizon,
        under_utilization=under_utilization,
        log_level=args.log_level,
    )
    model.load_sample_data(order_count=args.orders, seed=args.seed)
    return model


def run(args: argparse.Namespace) -> Dict[str, Any]:
    if args.config:
        ga_config, fitness_config, uu_config = load_config(args.config)
    else:
        ga_config, fitness_config, uu_config = GAConfig(), FitnessConfig(), UnderUtilizationConfig()

    overrides = {
        "population_size": args.population,
        "generations": args.generations,
        "seed": args.seed,
        "n_jobs": args.n_jobs,
    }
    ga_config = dataclasses.replace(
        ga_config,
        log_level=args.log_level,
        **{k: v for k, v in overrides.items() if v is not None},
    )

    model = build_model(args, uu_config)
    model.ensure_data_integrity()
    if args.save_model:
        save_model(model, args.save_model)

    summary = model.capacity_validation_summary()
    if not summary["can_optimize"]:
        return {"status": "invalid", "validation": summary}

    optimizer = GeneticOptimizer(model, ga_config, fitness_config)
    if not args.background:
        result = optimizer.optimize()
        return {"status": JobStatus.COMPLETED.value, "validation": summary, "result": result.to_dict()}

    manager = JobManager(log_level=args.log_level)
    job_id = manager.create_job(optimizer)
    status = manager.wait(job_id, timeout=args.timeout)
    if status is JobStatus.RUNNING:
        manager.cancel_job(job_id)
        manager.wait(job_id)
    payload = manager.get_job(job_id).to_dict()
    payload["validation"] = summary
    return payload


def main() -> None:
    parser = argparse.ArgumentParser(description="Capacity-aware genetic order scheduling")
    parser.add_argument("--model", default=None, help="PlanningModel JSON snapshot (default: sample data)")
    parser.add_argument("--config", default=None, help="optimizer YAML config, e.g. configs/optimizer.yaml")
    parser.add_argument("--granularity", choices=["weekly", "daily"], default="weekly", help="bucket width")
    parser.add_argument("--start-date", default=None, help="planning start date (default: today)")
    parser.add_argument("--horizon", type=int, default=None, help="number of buckets")
    parser.add_argument("--min-early-days", type=int, default=7, help="max days an order may ship early")
    parser.add_argument("--orders", type=int, default=50, help="sample order count")
    parser.add_argument("--population", type=int, default=None, help="population size")
    parser.add_argument("--generations", type=int, default=None, help="generation count")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    parser.add_argument("--n-jobs", type=int, default=None, help="fitness worker threads")
    parser.add_argument("--background", action="store_true", help="run through the job manager")
    parser.add_argument("--timeout", type=float, default=None, help="cancel background job after N seconds")
    parser.add_argument("--save-model", default=None, help="write the model snapshot here")
    parser.add_argument("--output", default=None, help="write the result JSON here")
    parser.add_argument("--log-level", default="INFO", help="DEBUG/INFO/WARNING")
    parser.add_argument("--json", action="store_true", help="print full result json")
    args = parser.parse_args()

    payload = run(args)

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False, indent=2)

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    print("status=%s" % payload["status"])
    print("validation: %s" % payload["validation"]["summary"])
    for issue in payload["validation"]["critical_issues"]:
        print("  critical: %s" % issue)
    result = payload.get("result")
    if result:
        print("final_fitness=%.2f" % result["final_fitness"])
        print("generations=%d elapsed=%.2fs" % (result["generations_run"], result["elapsed_sec"]))
    if payload.get("error"):
        print("error=%s (%s)" % (payload["error"], payload.get("error_type")))


if __name__ == "__main__":
    main()
