"""
Queued, retrying execution of workflows as background jobs.
"""

from .job import WorkflowJob
from .manager import WorkflowJobManager
from .models import JobProgress, JobRecord, JobStatus
from .store import InMemoryJobStore, JobStore, SqliteJobStore, create_job_store

__all__ = [
    "WorkflowJob",
    "WorkflowJobManager",
    "JobRecord",
    "JobStatus",
    "JobProgress",
    "JobStore",
    "InMemoryJobStore",
    "SqliteJobStore",
    "create_job_store",
]
