from datetime import datetime, timedelta

from orplan.ga import GAConfig, GeneticOptimizer
from orplan.jobs import JobManager
from orplan.schema import JobStatus


class DatetimeClock:
    def __init__(self):
        self.now = datetime(2025, 1, 6, 8, 0, 0)

    def __call__(self) -> datetime:
        return self.now


class FailingOptimizer:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def optimize(self):
        raise RuntimeError("boom")


def make_optimizer(model) -> GeneticOptimizer:
    return GeneticOptimizer(model, GAConfig(population_size=4, generations=3, seed=5))


def test_job_runs_to_completion(single_order_model):
    manager = JobManager()
    job_id = manager.create_job(make_optimizer(single_order_model))
    assert manager.wait(job_id, timeout=60) is JobStatus.COMPLETED
    job = manager.get_job(job_id)
    assert job.result.final_fitness == 100050
    assert job.completed_at is not None
    data = job.to_dict()
    assert data["status"] == "completed"
    assert data["result"]["best_solution"]["SO1"]["bucket"] == 0


def test_job_error_is_captured():
    manager = JobManager()
    job_id = manager.create_job(FailingOptimizer())
    assert manager.wait(job_id, timeout=10) is JobStatus.ERROR
    job = manager.get_job(job_id)
    assert job.error == "boom"
    assert job.error_type == "RuntimeError"
    assert job.error_at is not None
    assert job.result is None


def test_cancel_is_idempotent(single_order_model):
    clock = DatetimeClock()
    manager = JobManager(clock=clock)
    optimizer = make_optimizer(single_order_model)
    job_id = manager.create_job(optimizer, start=False)

    assert manager.cancel_job(job_id)
    job = manager.get_job(job_id)
    assert job.status is JobStatus.CANCELLED
    assert optimizer.cancelled
    stamp = job.cancelled_at

    clock.now += timedelta(minutes=5)
    assert manager.cancel_job(job_id)
    assert job.cancelled_at == stamp
    assert not manager.cancel_job("no-such-job")


def test_cancelled_job_state_is_final(single_order_model):
    manager = JobManager()
    job_id = manager.create_job(make_optimizer(single_order_model), start=False)
    manager.cancel_job(job_id)
    job = manager.get_job(job_id)
    manager._run(job)       # the optimizer raises OptimizationCancelled at its first checkpoint
    assert job.status is JobStatus.CANCELLED
    assert job.result is None
    assert job.error is None
    assert manager.wait(job_id, timeout=1) is JobStatus.CANCELLED


def test_cancel_after_completion_keeps_result(single_order_model):
    manager = JobManager()
    job_id = manager.create_job(make_optimizer(single_order_model))
    manager.wait(job_id, timeout=60)
    manager.cancel_job(job_id)
    job = manager.get_job(job_id)
    assert job.status is JobStatus.COMPLETED
    assert job.cancelled_at is None


def test_cleanup_old_jobs_keeps_running_jobs(single_order_model):
    clock = DatetimeClock()
    manager = JobManager(clock=clock)
    finished = manager.create_job(make_optimizer(single_order_model), start=False)
    running = manager.create_job(make_optimizer(single_order_model), start=False)
    manager.cancel_job(finished)

    clock.now += timedelta(minutes=30)
    assert manager.cleanup_old_jobs(max_age_minutes=60) == 0

    clock.now += timedelta(minutes=31)
    assert manager.cleanup_old_jobs(max_age_minutes=60) == 1
    assert set(manager.all_jobs()) == {running}
    assert manager.get_job(finished) is None


def test_unknown_job():
    manager = JobManager()
    assert manager.get_job("missing") is None
    assert manager.wait("missing", timeout=0.1) is None
