from __future__ import annotations

import math
import os
import sqlite3
import threading
import time
from collections import deque
from collections.abc import Mapping
from pathlib import Path
from typing import Any

DEFAULT_QUEUE_KEY = "evaluation_queue"


class InMemoryQueueBackend:
    """Process-local FIFO of job ids; blocking_pop parks on a condition variable."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.RLock())
        self._items: deque[str] = deque()

    def push(self, job_id: str) -> None:
        with self._cond:
            self._items.append(job_id)
            self._cond.notify()

    def blocking_pop(self, timeout: float | None = None) -> str | None:
        deadline = None if timeout is None else time.monotonic() + max(0.0, timeout)
        with self._cond:
            while not self._items:
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)
            return self._items.popleft()

    def peek(self) -> str | None:
        with self._cond:
            return self._items[0] if self._items else None

    def length(self) -> int:
        with self._cond:
            return len(self._items)

    def remove(self, job_id: str) -> int:
        with self._cond:
            kept = deque(item for item in self._items if item != job_id)
            removed = len(self._items) - len(kept)
            self._items = kept
            return removed

    def clear(self) -> None:
        with self._cond:
            self._items.clear()

    def reset(self) -> None:
        self.clear()


class SqliteQueueBackend:
    """SQLite-backed queue used for local persistence across worker restarts.

    blocking_pop polls the table; several processes may share one file.
    """

    def __init__(self, db_path: str | Path, *, poll_interval_s: float = 0.2) -> None:
        self._lock = threading.RLock()
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._poll_interval_s = max(0.01, float(poll_interval_s))
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_items (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def push(self, job_id: str) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("INSERT INTO queue_items(job_id) VALUES (?)", (job_id,))
            conn.commit()

    def _try_pop(self) -> str | None:
        with self._lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT seq, job_id FROM queue_items ORDER BY seq ASC LIMIT 1").fetchone()
            if row is None:
                conn.commit()
                return None
            conn.execute("DELETE FROM queue_items WHERE seq = ?", (row["seq"],))
            conn.commit()
            return str(row["job_id"])

    def blocking_pop(self, timeout: float | None = None) -> str | None:
        deadline = None if timeout is None else time.monotonic() + max(0.0, timeout)
        while True:
            job_id = self._try_pop()
            if job_id is not None:
                return job_id
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                time.sleep(min(self._poll_interval_s, remaining))
            else:
                time.sleep(self._poll_interval_s)

    def peek(self) -> str | None:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT job_id FROM queue_items ORDER BY seq ASC LIMIT 1").fetchone()
        return None if row is None else str(row["job_id"])

    def length(self) -> int:
        with self._lock, self._connect() as conn:
            row = conn.execute("SELECT COUNT(1) AS cnt FROM queue_items").fetchone()
        return int(row["cnt"]) if row is not None else 0

    def remove(self, job_id: str) -> int:
        with self._lock, self._connect() as conn:
            cursor = conn.execute("DELETE FROM queue_items WHERE job_id = ?", (job_id,))
            conn.commit()
            return int(cursor.rowcount)

    def clear(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM queue_items")
            conn.commit()

    def reset(self) -> None:
        self.clear()


def _import_redis() -> Any:
    try:
        import redis  # type: ignore
    except ImportError as exc:
        raise RuntimeError("redis is required for CVEVAL_QUEUE_BACKEND=redis; install redis>=5") from exc
    return redis


class RedisQueueBackend:
    """Redis list queue: LPUSH on submit, BRPOP in the worker (FIFO)."""

    def __init__(self, *, url: str = "", key: str = DEFAULT_QUEUE_KEY, client: Any = None) -> None:
        self._key = key.strip() or DEFAULT_QUEUE_KEY
        if client is not None:
            self._client = client
            return
        if not url.strip():
            raise ValueError("REDIS_URL must be provided for redis queue backend")
        redis = _import_redis()
        self._client = redis.Redis.from_url(url.strip(), decode_responses=True)

    @property
    def key(self) -> str:
        return self._key

    def push(self, job_id: str) -> None:
        self._client.lpush(self._key, job_id)

    def blocking_pop(self, timeout: float | None = None) -> str | None:
        # BRPOP treats 0 as "wait forever" and only accepts whole seconds on older servers
        wait = 0 if timeout is None else max(1, math.ceil(timeout))
        result = self._client.brpop([self._key], timeout=wait)
        if not result:
            return None
        _, job_id = result
        return job_id.decode("utf-8") if isinstance(job_id, bytes) else str(job_id)

    def peek(self) -> str | None:
        value = self._client.lindex(self._key, -1)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def length(self) -> int:
        return int(self._client.llen(self._key))

    def remove(self, job_id: str) -> int:
        return int(self._client.lrem(self._key, 0, job_id))

    def clear(self) -> None:
        self._client.delete(self._key)

    def reset(self) -> None:
        self.clear()


def create_queue_from_env(
    environ: Mapping[str, str] | None = None,
) -> InMemoryQueueBackend | SqliteQueueBackend | RedisQueueBackend:
    env = os.environ if environ is None else environ
    backend = env.get("CVEVAL_QUEUE_BACKEND", "memory").strip().lower()
    if backend == "memory":
        return InMemoryQueueBackend()
    if backend == "sqlite":
        db_path = env.get("CVEVAL_QUEUE_SQLITE_PATH", ".runtime/cveval_queue.sqlite3")
        return SqliteQueueBackend(db_path)
    if backend == "redis":
        url = env.get("REDIS_URL", "").strip()
        if not url:
            raise ValueError("REDIS_URL must be set when CVEVAL_QUEUE_BACKEND=redis")
        key = env.get("CVEVAL_QUEUE_KEY", DEFAULT_QUEUE_KEY)
        return RedisQueueBackend(url=url, key=key)
    raise RuntimeError(f"unsupported queue backend: {backend}")
