from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest

from cveval.queue_backend import (
    DEFAULT_QUEUE_KEY,
    InMemoryQueueBackend,
    RedisQueueBackend,
    SqliteQueueBackend,
    create_queue_from_env,
)


class FakeRedis:
    """Just enough of redis-py's list API for RedisQueueBackend."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.brpop_timeouts: list[int] = []

    def lpush(self, key, value):
        self.lists.setdefault(key, []).insert(0, value)
        return len(self.lists[key])

    def brpop(self, keys, timeout=0):
        self.brpop_timeouts.append(timeout)
        for key in keys:
            items = self.lists.get(key) or []
            if items:
                return key, items.pop()
        return None

    def lindex(self, key, index):
        items = self.lists.get(key) or []
        try:
            return items[index]
        except IndexError:
            return None

    def llen(self, key):
        return len(self.lists.get(key) or [])

    def lrem(self, key, count, value):
        items = self.lists.get(key) or []
        kept = [item for item in items if item != value]
        self.lists[key] = kept
        return len(items) - len(kept)

    def delete(self, key):
        self.lists.pop(key, None)


@pytest.fixture(params=["memory", "sqlite", "redis"])
def queue(request, tmp_path: Path):
    if request.param == "memory":
        return InMemoryQueueBackend()
    if request.param == "sqlite":
        return SqliteQueueBackend(tmp_path / "queue.sqlite3", poll_interval_s=0.01)
    return RedisQueueBackend(client=FakeRedis())


def test_queue_is_fifo(queue):
    for job_id in ["job_a", "job_b", "job_c"]:
        queue.push(job_id)

    assert queue.length() == 3
    assert queue.peek() == "job_a"
    assert [queue.blocking_pop(timeout=0.05) for _ in range(3)] == ["job_a", "job_b", "job_c"]
    assert queue.length() == 0


def test_blocking_pop_returns_none_after_finite_timeout(queue):
    assert queue.blocking_pop(timeout=0.05) is None
    assert queue.peek() is None


def test_remove_and_clear(queue):
    for job_id in ["job_a", "job_b", "job_a"]:
        queue.push(job_id)

    assert queue.remove("job_a") == 2
    assert queue.length() == 1
    assert queue.remove("job_missing") == 0

    queue.clear()
    assert queue.length() == 0


def test_in_memory_blocking_pop_wakes_on_push():
    queue = InMemoryQueueBackend()
    popped: list[str | None] = []

    consumer = threading.Thread(target=lambda: popped.append(queue.blocking_pop(timeout=5)))
    consumer.start()
    time.sleep(0.05)
    queue.push("job_late")
    consumer.join(timeout=5)

    assert popped == ["job_late"]


def test_sqlite_queue_persists_between_instances(tmp_path: Path):
    db_path = tmp_path / "queue.sqlite3"
    SqliteQueueBackend(db_path).push("job_persisted")

    reopened = SqliteQueueBackend(db_path)

    assert reopened.length() == 1
    assert reopened.blocking_pop(timeout=0.05) == "job_persisted"


def test_redis_queue_uses_lpush_brpop_on_single_key():
    client = FakeRedis()
    queue = RedisQueueBackend(client=client)
    queue.push("job_1")

    assert client.lists[DEFAULT_QUEUE_KEY] == ["job_1"]
    assert queue.blocking_pop(timeout=0.2) == "job_1"
    assert queue.blocking_pop(timeout=None) is None
    # fractional timeouts round up to a whole second; None blocks forever (0)
    assert client.brpop_timeouts == [1, 0]


def test_redis_queue_decodes_bytes_payloads():
    client = FakeRedis()
    client.lists[DEFAULT_QUEUE_KEY] = [b"job_bytes"]
    queue = RedisQueueBackend(client=client)

    assert queue.peek() == "job_bytes"
    assert queue.blocking_pop(timeout=1) == "job_bytes"


def test_redis_queue_requires_url_without_client():
    with pytest.raises(ValueError, match="REDIS_URL"):
        RedisQueueBackend(url="")


def test_queue_factory_defaults_to_memory():
    assert isinstance(create_queue_from_env({}), InMemoryQueueBackend)


def test_queue_factory_builds_sqlite(tmp_path: Path):
    queue = create_queue_from_env(
        {"CVEVAL_QUEUE_BACKEND": "sqlite", "CVEVAL_QUEUE_SQLITE_PATH": str(tmp_path / "q.sqlite3")}
    )
    assert isinstance(queue, SqliteQueueBackend)


def test_queue_factory_validates_redis_and_unknown_backends():
    with pytest.raises(ValueError, match="REDIS_URL"):
        create_queue_from_env({"CVEVAL_QUEUE_BACKEND": "redis"})
    with pytest.raises(RuntimeError, match="unsupported queue backend"):
        create_queue_from_env({"CVEVAL_QUEUE_BACKEND": "rabbitmq"})
