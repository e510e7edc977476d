"""
Storage backends for job records.
"""

import asyncio
import copy
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional

from .models import JobRecord, JobStatus

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Abstract base class for job record storage."""

    @abstractmethod
    async def save(self, record: JobRecord) -> None:
        """Insert or replace a job record."""
        pass

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        """Retrieve a job record, or None if unknown."""
        pass

    @abstractmethod
    async def delete(self, job_id: str) -> None:
        """Remove a job record."""
        pass

    @abstractmethod
    async def list(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        """List records, oldest first, optionally filtered by status."""
        pass

    async def close(self) -> None:
        """Release resources held by the store."""
        return None


class InMemoryJobStore(JobStore):
    """In-memory storage for job records."""

    def __init__(self):
        self._store: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()
        self._logger = logger.getChild("memory_store")

    async def save(self, record: JobRecord) -> None:
        async with self._lock:
            self._store[record.id] = copy.deepcopy(record)
            self._logger.debug(f"Stored job {record.id} ({record.status.value})")

    async def get(self, job_id: str) -> Optional[JobRecord]:
        async with self._lock:
            record = self._store.get(job_id)
            return copy.deepcopy(record) if record else None

    async def delete(self, job_id: str) -> None:
        async with self._lock:
            self._store.pop(job_id, None)
            self._logger.debug(f"Deleted job {job_id}")

    async def list(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        async with self._lock:
            records = [
                copy.deepcopy(record)
                for record in self._store.values()
                if status is None or record.status == status
            ]
        return sorted(records, key=lambda record: record.created_at)


class SqliteJobStore(JobStore):
    """
    Durable job storage in a SQLite file.

    Each call opens its own connection and runs in a worker thread, so the
    event loop is never blocked on disk I/O.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._logger = logger.getChild("sqlite_store")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    workflow_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at INTEGER NOT NULL,
                    data TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs (status)")
            conn.commit()
        self._logger.debug(f"Job store ready at {self.path}")

    def _save_sync(self, record: JobRecord) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO jobs (id, workflow_id, status, created_at, data) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.workflow_id,
                    record.status.value,
                    record.created_at,
                    json.dumps(record.to_dict(), ensure_ascii=False),
                ),
            )
            conn.commit()

    def _get_sync(self, job_id: str) -> Optional[JobRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT data FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return JobRecord.from_dict(json.loads(row["data"])) if row else None

    def _delete_sync(self, job_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            conn.commit()

    def _list_sync(self, status: Optional[JobStatus]) -> List[JobRecord]:
        with self._connect() as conn:
            if status is None:
                rows = conn.execute("SELECT data FROM jobs ORDER BY created_at, id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT data FROM jobs WHERE status = ? ORDER BY created_at, id",
                    (status.value,),
                ).fetchall()
        return [JobRecord.from_dict(json.loads(row["data"])) for row in rows]

    async def save(self, record: JobRecord) -> None:
        await asyncio.to_thread(self._save_sync, record)

    async def get(self, job_id: str) -> Optional[JobRecord]:
        return await asyncio.to_thread(self._get_sync, job_id)

    async def delete(self, job_id: str) -> None:
        await asyncio.to_thread(self._delete_sync, job_id)

    async def list(self, status: Optional[JobStatus] = None) -> List[JobRecord]:
        return await asyncio.to_thread(self._list_sync, status)


def create_job_store(settings) -> JobStore:
    """
    Create the store named by the ``job_store_backend`` setting.

    Raises:
        ValueError: If the backend is unknown
    """
    backend = (settings.get_setting("job_store_backend") or "memory").lower()
    if backend == "memory":
        return InMemoryJobStore()
    if backend == "sqlite":
        path = settings.get_setting("job_store_path")
        logger.info(f"Using SQLite job store at {path}")
        return SqliteJobStore(path)
    raise ValueError(f"Unknown job store backend '{backend}', expected 'memory' or 'sqlite'")
