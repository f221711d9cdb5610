"""SQLite implementation of JobStore.

Local-first persistence for restart recovery:
- sqlite-utils for table access
- WAL mode for concurrent readers during writes
- One connection shared by all threads, serialized by an internal lock
- Compare-and-set updates on status so terminal states stay final
"""

import logging
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlite_utils import Database

from .backends import JobStore
from .errors import JobNotFound, StoreError
from .models import Job, JobStatus, utcnow

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    status TEXT NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0,
    input_path TEXT NOT NULL,
    output_path TEXT NOT NULL,
    remote_id TEXT,
    remote_url TEXT,
    error TEXT,
    original_name TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    completed_at TEXT,
    deleted_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_created ON jobs(created_at);
CREATE INDEX IF NOT EXISTS idx_jobs_deleted ON jobs(deleted_at);
"""

# Every column except the primary key, in table order
UPDATE_COLUMNS = (
    "status",
    "progress",
    "input_path",
    "output_path",
    "remote_id",
    "remote_url",
    "error",
    "original_name",
    "created_at",
    "updated_at",
    "completed_at",
    "deleted_at",
)


class SQLiteJobStore(JobStore):
    """SQLite-backed job records with soft delete."""

    def __init__(self, db_path: str):
        """Open (or create) the database.

        Args:
            db_path: Path to the SQLite file

        Raises:
            StoreError: If the database cannot be opened or migrated
        """
        self.db_path = Path(db_path)
        self._lock = threading.RLock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.db = Database(conn)

            self.db.conn.execute("PRAGMA journal_mode=WAL")
            self.db.conn.execute("PRAGMA synchronous=NORMAL")  # Faster writes, still crash-safe
            self.db.conn.commit()

            self.db.executescript(SCHEMA_SQL)
        except (OSError, sqlite3.Error) as e:
            raise StoreError(f"cannot open job database {self.db_path}: {e}") from e

        logger.info("Job database initialized at %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            self.db.conn.close()

    @staticmethod
    def _to_row(job: Job) -> Dict[str, Any]:
        row = job.model_dump()
        row["status"] = JobStatus(row["status"]).value
        # Fixed-width timestamps so ORDER BY on the text column is chronological
        for key, value in row.items():
            if isinstance(value, datetime):
                row[key] = value.astimezone(timezone.utc).isoformat(timespec="microseconds")
        return row

    @staticmethod
    def _from_row(row: Dict[str, Any]) -> Job:
        return Job.model_validate(dict(row))

    def create(self, job: Job) -> None:
        with self._lock:
            try:
                with self.db.conn:
                    self.db["jobs"].insert(self._to_row(job), pk="id")
            except sqlite3.IntegrityError as e:
                raise StoreError(f"job {job.id} already exists") from e

    def get(self, job_id: str) -> Job:
        with self._lock:
            rows = list(
                self.db["jobs"].rows_where("id = ? AND deleted_at IS NULL", [job_id])
            )
        if not rows:
            raise JobNotFound(job_id)
        return self._from_row(rows[0])

    def update(
        self,
        job: Job,
        only_if_status: Optional[Iterable[JobStatus]] = None,
    ) -> bool:
        row = self._to_row(job)
        assignments = ", ".join(f"{col} = ?" for col in UPDATE_COLUMNS)
        params: List[Any] = [row[col] for col in UPDATE_COLUMNS]

        sql = f"UPDATE jobs SET {assignments} WHERE id = ? AND deleted_at IS NULL"
        params.append(job.id)

        if only_if_status is not None:
            statuses = [JobStatus(s).value for s in only_if_status]
            if not statuses:
                return False
            sql += f" AND status IN ({', '.join('?' for _ in statuses)})"
            params.extend(statuses)

        with self._lock:
            with self.db.conn:
                cursor = self.db.execute(sql, params)
                return cursor.rowcount > 0

    def list_by_status(self, statuses: Iterable[JobStatus]) -> List[Job]:
        values = [JobStatus(s).value for s in statuses]
        if not values:
            return []
        where = f"status IN ({', '.join('?' for _ in values)}) AND deleted_at IS NULL"
        with self._lock:
            rows = list(self.db["jobs"].rows_where(where, values, order_by="created_at"))
        return [self._from_row(row) for row in rows]

    def list_jobs(self, limit: int = 20, offset: int = 0) -> Tuple[List[Job], int]:
        with self._lock:
            total = self.db.execute(
                "SELECT COUNT(*) FROM jobs WHERE deleted_at IS NULL"
            ).fetchone()[0]
            rows = list(
                self.db["jobs"].rows_where(
                    "deleted_at IS NULL",
                    order_by="created_at DESC",
                    limit=limit,
                    offset=offset,
                )
            )
        return [self._from_row(row) for row in rows], total

    def soft_delete(self, job_id: str) -> None:
        now = utcnow().isoformat(timespec="microseconds")
        with self._lock:
            with self.db.conn:
                cursor = self.db.execute(
                    "UPDATE jobs SET deleted_at = ?, updated_at = ? "
                    "WHERE id = ? AND deleted_at IS NULL",
                    [now, now, job_id],
                )
                if cursor.rowcount == 0:
                    raise JobNotFound(job_id)
