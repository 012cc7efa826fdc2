from __future__ import annotations

import copy
import json
import sqlite3
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from cveval.models import Job


class InMemoryJobsRepository:
    def __init__(self, jobs: dict[str, dict[str, Any]] | None = None) -> None:
        self._lock = threading.RLock()
        self._jobs = {} if jobs is None else jobs

    def create(self, *, job: Job) -> Job:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"duplicate job id: {job.job_id}")
            self._jobs[job.job_id] = copy.deepcopy(job.as_dict())
            return Job.from_dict(copy.deepcopy(self._jobs[job.job_id]))

    def get(self, *, job_id: str) -> Job | None:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None:
                return None
            return Job.from_dict(copy.deepcopy(row))

    def compare_and_update(
        self,
        *,
        job_id: str,
        expected_status: str,
        fields: dict[str, Any],
    ) -> Job | None:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None or row.get("status") != expected_status:
                return None
            updated = {**row, **copy.deepcopy(fields)}
            self._jobs[job_id] = updated
            return Job.from_dict(copy.deepcopy(updated))

    def increment_retry(self, *, job_id: str, updated_at: str) -> Job | None:
        with self._lock:
            row = self._jobs.get(job_id)
            if row is None:
                return None
            row["retry_count"] = int(row.get("retry_count", 0)) + 1
            row["updated_at"] = updated_at
            return Job.from_dict(copy.deepcopy(row))

    def list(
        self,
        *,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]:
        with self._lock:
            rows = [copy.deepcopy(row) for row in self._jobs.values()]
        if statuses is not None:
            wanted = set(statuses)
            rows = [row for row in rows if row.get("status") in wanted]
        rows.sort(key=lambda row: (str(row.get("created_at", "")), str(row["job_id"])), reverse=True)
        start = max(0, offset)
        end = None if limit is None else start + max(0, limit)
        return [Job.from_dict(row) for row in rows[start:end]]

    def reset(self) -> None:
        with self._lock:
            self._jobs.clear()


_JOB_COLUMNS = (
    "job_id",
    "status",
    "cv_file",
    "project_file",
    "cv_content",
    "project_content",
    "created_at",
    "updated_at",
    "started_at",
    "completed_at",
    "result",
    "error_message",
    "retry_count",
)


class SqliteJobsRepository:
    """SQLite-backed jobs table; every state change is a single conditional UPDATE."""

    def __init__(self, db_path: str | Path) -> None:
        self._lock = threading.RLock()
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS evaluation_jobs (
                    job_id TEXT PRIMARY KEY,
                    status TEXT NOT NULL,
                    cv_file TEXT NOT NULL DEFAULT '',
                    project_file TEXT NOT NULL DEFAULT '',
                    cv_content TEXT NOT NULL,
                    project_content TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    result TEXT,
                    error_message TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_evaluation_jobs_status
                ON evaluation_jobs(status, created_at)
                """
            )
            conn.commit()

    @staticmethod
    def _encode(column: str, value: Any) -> Any:
        if column == "result":
            return None if value is None else json.dumps(value, ensure_ascii=True, sort_keys=True)
        return value

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        data = {key: row[key] for key in row.keys()}
        raw_result = data.get("result")
        data["result"] = json.loads(raw_result) if raw_result else None
        return Job.from_dict(data)

    def _fetch(self, conn: sqlite3.Connection, job_id: str) -> Job | None:
        row = conn.execute(
            f"SELECT {', '.join(_JOB_COLUMNS)} FROM evaluation_jobs WHERE job_id = ?",
            (job_id,),
        ).fetchone()
        return None if row is None else self._row_to_job(row)

    def create(self, *, job: Job) -> Job:
        data = job.as_dict()
        with self._lock, self._connect() as conn:
            try:
                conn.execute(
                    f"""
                    INSERT INTO evaluation_jobs ({', '.join(_JOB_COLUMNS)})
                    VALUES ({', '.join('?' for _ in _JOB_COLUMNS)})
                    """,
                    tuple(self._encode(col, data[col]) for col in _JOB_COLUMNS),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError(f"duplicate job id: {job.job_id}") from exc
            conn.commit()
        return job

    def get(self, *, job_id: str) -> Job | None:
        with self._lock, self._connect() as conn:
            return self._fetch(conn, job_id)

    def compare_and_update(
        self,
        *,
        job_id: str,
        expected_status: str,
        fields: dict[str, Any],
    ) -> Job | None:
        unknown = set(fields) - set(_JOB_COLUMNS)
        if unknown:
            raise ValueError(f"unknown job columns: {sorted(unknown)}")
        columns = list(fields)
        assignments = ", ".join(f"{col} = ?" for col in columns)
        params = [self._encode(col, fields[col]) for col in columns]
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                f"UPDATE evaluation_jobs SET {assignments} WHERE job_id = ? AND status = ?",
                (*params, job_id, expected_status),
            )
            if cursor.rowcount == 0:
                conn.commit()
                return None
            job = self._fetch(conn, job_id)
            conn.commit()
            return job

    def increment_retry(self, *, job_id: str, updated_at: str) -> Job | None:
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            cursor = conn.execute(
                """
                UPDATE evaluation_jobs
                SET retry_count = retry_count + 1, updated_at = ?
                WHERE job_id = ?
                """,
                (updated_at, job_id),
            )
            if cursor.rowcount == 0:
                conn.commit()
                return None
            job = self._fetch(conn, job_id)
            conn.commit()
            return job

    def list(
        self,
        *,
        statuses: Iterable[str] | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Job]:
        sql = f"SELECT {', '.join(_JOB_COLUMNS)} FROM evaluation_jobs"
        params: list[Any] = []
        if statuses is not None:
            wanted = sorted(set(statuses))
            if not wanted:
                return []
            sql += f" WHERE status IN ({', '.join('?' for _ in wanted)})"
            params.extend(wanted)
        sql += " ORDER BY created_at DESC, job_id DESC LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else max(0, limit), max(0, offset)])
        with self._lock, self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_job(row) for row in rows]

    def reset(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM evaluation_jobs")
            conn.commit()
