"""
Optimization job registry.

Each job runs one GeneticOptimizer on a background thread. Status moves
from running to exactly one terminal state (completed / error / cancelled)
and is never changed again afterwards; a run that finishes after its job
was cancelled leaves the job cancelled.

Usage:
    manager = JobManager()
    job_id = manager.create_job(optimizer)
    manager.wait(job_id, timeout=60)
    manager.get_job(job_id).to_dict()
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from orplan.ga.ga_core import GeneticOptimizer, OptimizationCancelled, OptimizationResult
from orplan.log import setup_logger
from orplan.schema import JobStatus


@dataclass
class Job:
    """One optimization run and its outcome"""
    job_id: str
    optimizer: GeneticOptimizer
    status: JobStatus = JobStatus.RUNNING
    result: Optional[OptimizationResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    done: threading.Event = field(default_factory=threading.Event, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        def stamp(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "error_type": self.error_type,
            "created_at": stamp(self.created_at),
            "completed_at": stamp(self.completed_at),
            "error_at": stamp(self.error_at),
            "cancelled_at": stamp(self.cancelled_at),
        }


class JobManager:
    """Thread-safe job registry keyed by opaque uuid4 ids."""

    def __init__(
        self,
        clock: Optional[Callable[[], datetime]] = None,
        log_level: str = "INFO",
    ):
        self.clock = clock or datetime.now
        self.logger = setup_logger("orplan.jobs", log_level)
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create_job(self, optimizer: GeneticOptimizer, start: bool = True) -> str:
        """Register a job and (by default) start its optimizer on a daemon thread."""
        job_id = str(uuid.uuid4())
        job = Job(job_id=job_id, optimizer=optimizer, created_at=self.clock())
        with self._lock:
            self._jobs[job_id] = job
        self.logger.info(f"Created job {job_id}")
        if start:
            thread = threading.Thread(target=self._run, args=(job,), name=f"orplan-job-{job_id[:8]}", daemon=True)
            thread.start()
        return job_id

    def _run(self, job: Job) -> None:
        try:
            result = job.optimizer.optimize()
        except OptimizationCancelled:
            self._finish(job, JobStatus.CANCELLED)
        except Exception as e:
            self.logger.error(f"Job {job.job_id} failed: {e}")
            self._finish(job, JobStatus.ERROR, error=e)
        else:
            self._finish(job, JobStatus.COMPLETED, result=result)
        finally:
            job.done.set()

    def _finish(
        self,
        job: Job,
        status: JobStatus,
        result: Optional[OptimizationResult] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        now = self.clock()
        with self._lock:
            if job.status.is_terminal:
                return
            job.status = status
            if status is JobStatus.COMPLETED:
                job.result = result
                job.completed_at = now
            elif status is JobStatus.ERROR:
                job.error = str(error)
                job.error_type = type(error).__name__
                job.error_at = now
            else:
                job.cancelled_at = now
        self.logger.info(f"Job {job.job_id} {status.value}")

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a running job.

        Idempotent: cancelling a finished or already cancelled job changes
        nothing. Returns False for unknown ids.
        """
        job = self.get_job(job_id)
        if job is None:
            return False
        job.optimizer.cancel()
        self._finish(job, JobStatus.CANCELLED)
        return True

    def cleanup_old_jobs(self, max_age_minutes: float = 60) -> int:
        """Drop finished jobs created more than `max_age_minutes` ago; returns how many."""
        cutoff = self.clock() - timedelta(minutes=max_age_minutes)
        with self._lock:
            stale = [
                job_id for job_id, job in self._jobs.items()
                if job.created_at < cutoff and job.status.is_terminal
            ]
            for job_id in stale:
                del self._jobs[job_id]
        for job_id in stale:
            self.logger.info(f"Cleaned up old job {job_id}")
        return len(stale)

    def all_jobs(self) -> Dict[str, Job]:
        with self._lock:
            return dict(self._jobs)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Optional[JobStatus]:
        """Block until the job's thread exits (or timeout); returns its status."""
        job = self.get_job(job_id)
        if job is None:
            return None
        job.done.wait(timeout)
        return job.status
