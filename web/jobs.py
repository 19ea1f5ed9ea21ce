import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Job:
    """A background media job (session export or compilation)."""

    def __init__(self, job_id: str, job_type: str, target: str, params: dict):
        self.id = job_id
        self.job_type = job_type
        self.status = JobStatus.PENDING
        self.target = target
        self.params = params
        self.result: Optional[dict] = None
        self.error: Optional[str] = None
        self.diagnostics: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self._lock = threading.Lock()
        self._done = threading.Event()

    def start(self):
        with self._lock:
            self.status = JobStatus.RUNNING
            self.started_at = datetime.now(timezone.utc)

    def complete(self, result: dict):
        with self._lock:
            self.status = JobStatus.COMPLETED
            self.result = result
            self.completed_at = datetime.now(timezone.utc)
        self._done.set()

    def fail(self, error: str, diagnostics: Optional[str] = None):
        with self._lock:
            self.status = JobStatus.FAILED
            self.error = error
            self.diagnostics = diagnostics or None
            self.completed_at = datetime.now(timezone.utc)
        self._done.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job completes or fails."""
        return self._done.wait(timeout=timeout)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "jobId": self.id,
                "type": self.job_type,
                "status": self.status.value,
                "target": self.target,
                "params": self.params,
                "result": self.result,
                "error": self.error,
                "diagnostics": self.diagnostics,
                "createdAt": self.created_at.isoformat() if self.created_at else None,
                "startedAt": self.started_at.isoformat() if self.started_at else None,
                "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            }


class JobManager:
    """Thread-safe in-memory job store."""

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    def create_job(self, job_type: str, target: str, params: dict) -> Job:
        job_id = uuid.uuid4().hex[:8]
        job = Job(job_id, job_type, target, params)
        with self._lock:
            self._jobs[job_id] = job
        return job

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)
