"""
Data models for workflow jobs.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


class JobStatus(str, Enum):
    """Possible states for a job."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


@dataclass
class JobProgress:
    """Progress information for a running job."""
    current: int
    total: int
    message: Optional[str] = None
    task_id: Optional[str] = None

    @property
    def percentage(self) -> float:
        """Calculate completion percentage."""
        return (self.current / self.total) * 100 if self.total > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "percentage": self.percentage,
            "message": self.message,
            "taskId": self.task_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobProgress":
        return cls(
            current=data.get("current", 0),
            total=data.get("total", 0),
            message=data.get("message"),
            task_id=data.get("taskId"),
        )


@dataclass
class JobRecord:
    """
    Stored state of one workflow job.

    The workflow definition and user input are kept with the record so a
    durable store can re-run unfinished jobs after a restart.
    """
    id: str
    workflow_id: str
    workflow: Dict[str, Any]
    user_input: Dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    progress: Optional[JobProgress] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts_made: int = 0
    created_at: int = field(default_factory=now_ms)
    processed_on: Optional[int] = None
    finished_on: Optional[int] = None

    def to_status_dict(self) -> Dict[str, Any]:
        """Public job status, camelCase."""
        return {
            "id": self.id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "progress": self.progress.to_dict() if self.progress else None,
            "result": self.result,
            "error": self.error,
            "attemptsMade": self.attempts_made,
            "createdAt": self.created_at,
            "processedOn": self.processed_on,
            "finishedOn": self.finished_on,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full record including the workflow definition and user input."""
        data = self.to_status_dict()
        data["workflow"] = self.workflow
        data["userInput"] = self.user_input
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobRecord":
        progress = data.get("progress")
        return cls(
            id=data["id"],
            workflow_id=data["workflowId"],
            workflow=data.get("workflow") or {},
            user_input=data.get("userInput") or {},
            status=JobStatus(data.get("status", JobStatus.PENDING.value)),
            progress=JobProgress.from_dict(progress) if progress else None,
            result=data.get("result"),
            error=data.get("error"),
            attempts_made=data.get("attemptsMade", 0),
            created_at=data.get("createdAt") or now_ms(),
            processed_on=data.get("processedOn"),
            finished_on=data.get("finishedOn"),
        )
