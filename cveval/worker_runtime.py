from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from cveval.models import STATUS_PROCESSING

logger = logging.getLogger(__name__)


@dataclass
class WorkerRunStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    exhausted: int = 0
    missing: int = 0
    queue_errors: int = 0
    store_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "exhausted": self.exhausted,
            "missing": self.missing,
            "queue_errors": self.queue_errors,
            "store_errors": self.store_errors,
        }

    def merge(self, other: Mapping[str, int]) -> None:
        for name, value in other.items():
            setattr(self, name, getattr(self, name, 0) + int(value))


class WorkerRuntime:
    """Single consumer of the evaluation queue.

    The store record, not the queue payload, decides what happens to an id:
    unknown ids and terminal jobs are skipped, jobs past the retry budget are
    failed without running the pipeline.
    """

    def __init__(
        self,
        *,
        store: Any,
        queue_backend: Any,
        orchestrator: Any,
        max_retries: int = 3,
        poll_timeout_s: float = 1.0,
        queue_error_backoff_s: float = 5.0,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.store = store
        self.queue_backend = queue_backend
        self.orchestrator = orchestrator
        self.max_retries = max(0, int(max_retries))
        self.poll_timeout_s = max(0.01, float(poll_timeout_s))
        self.queue_error_backoff_s = max(0.0, float(queue_error_backoff_s))
        self._stop_event = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop_event.wait
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.totals = WorkerRunStats()

    def process_job(self, job_id: str, stats: WorkerRunStats | None = None) -> str:
        """Handle one popped id; returns the outcome name recorded in ``stats``."""
        stats = stats if stats is not None else WorkerRunStats()
        stats.processed += 1
        try:
            job = self.store.get_by_id(job_id)
        except Exception:
            logger.exception("job_lookup_failed job_id=%s", job_id)
            stats.store_errors += 1
            return "store_error"
        if job is None:
            logger.warning("job_not_found job_id=%s", job_id)
            stats.missing += 1
            return "missing"
        if job.is_terminal:
            logger.debug("job_already_terminal job_id=%s status=%s", job_id, job.status)
            stats.skipped += 1
            return "skipped"
        try:
            if job.retry_count >= self.max_retries:
                self.store.fail_max_retries(job_id)
                logger.warning("job_retries_exhausted job_id=%s retry_count=%d", job_id, job.retry_count)
                stats.exhausted += 1
                return "exhausted"
            job = self.store.update_status(job_id, STATUS_PROCESSING)
        except Exception as exc:
            logger.error("job_transition_failed job_id=%s error=%s", job_id, exc)
            stats.store_errors += 1
            return "store_error"

        try:
            result = self.orchestrator.run_evaluation(job)
        except Exception as exc:
            logger.error("job_failed job_id=%s error=%s", job_id, exc)
            try:
                self.store.update_error(job_id, str(exc))
                self.store.increment_retry(job_id)
            except Exception as store_exc:
                logger.error("job_failure_not_recorded job_id=%s error=%s", job_id, store_exc)
                stats.store_errors += 1
                return "store_error"
            stats.failed += 1
            return "failed"

        try:
            self.store.update_result(job_id, result)
        except Exception as exc:
            logger.error("job_result_not_recorded job_id=%s error=%s", job_id, exc)
            stats.store_errors += 1
            return "store_error"
        logger.info("job_completed job_id=%s", job_id)
        stats.succeeded += 1
        return "succeeded"

    def run_once(self) -> dict[str, int]:
        stats = WorkerRunStats()
        try:
            job_id = self.queue_backend.blocking_pop(timeout=self.poll_timeout_s)
        except Exception as exc:
            logger.error("queue_pop_failed error=%s backoff_s=%s", exc, self.queue_error_backoff_s)
            stats.queue_errors += 1
            self._sleep(self.queue_error_backoff_s)
            return stats.as_dict()
        if job_id:
            self.process_job(job_id, stats)
        return stats.as_dict()

    def run_forever(self, *, stop_after_iterations: int | None = None) -> dict[str, int]:
        aggregate = WorkerRunStats()
        iterations = 0
        while not self._stop_event.is_set():
            current = self.run_once()
            aggregate.merge(current)
            with self._lock:
                self.totals.merge(current)
            iterations += 1
            if stop_after_iterations is not None and iterations >= max(1, stop_after_iterations):
                break
        return aggregate.as_dict()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_forever, name="cveval-worker", daemon=True)
        self._thread.start()
        logger.info("worker_started poll_timeout_s=%s max_retries=%d", self.poll_timeout_s, self.max_retries)

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout if timeout is not None else self.poll_timeout_s + 5.0)
        self._thread = None
        logger.info("worker_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def queue_status(self) -> dict[str, Any]:
        return {
            "queue_length": self.queue_backend.length(),
            "pending_jobs": len(self.store.list_pending()),
            "status": "running" if self.is_running else "stopped",
        }


def _env_int(env: Mapping[str, str], name: str, *, default: int, minimum: int = 0) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(env: Mapping[str, str], name: str, *, default: float, minimum: float = 0.0) -> float:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def create_worker_runtime_from_env(
    *,
    store: Any,
    queue_backend: Any,
    orchestrator: Any,
    environ: Mapping[str, str] | None = None,
) -> WorkerRuntime:
    env = os.environ if environ is None else environ
    return WorkerRuntime(
        store=store,
        queue_backend=queue_backend,
        orchestrator=orchestrator,
        max_retries=_env_int(env, "MAX_RETRIES", default=3, minimum=0),
        poll_timeout_s=_env_float(env, "WORKER_POLL_TIMEOUT_S", default=1.0, minimum=0.01),
        queue_error_backoff_s=_env_float(env, "WORKER_QUEUE_ERROR_BACKOFF_S", default=5.0),
    )
