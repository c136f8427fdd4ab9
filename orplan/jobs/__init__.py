"""
Background optimization jobs.
"""

from .job_manager import Job, JobManager

__all__ = [
    "Job",
    "JobManager",
]
