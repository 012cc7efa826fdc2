from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from cveval.errors import ApiError
from cveval.models import (
    MAX_RETRIES_EXCEEDED,
    PENDING_STATUSES,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    Job,
    ReferenceDocument,
    new_document_id,
    utcnow_iso,
)
from cveval.repositories import (
    InMemoryJobsRepository,
    InMemoryReferenceDocumentsRepository,
    SqliteJobsRepository,
    SqliteReferenceDocumentsRepository,
)

logger = logging.getLogger(__name__)

VALID_STATUSES = frozenset({STATUS_QUEUED, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED})


def _job_not_found(job_id: str) -> ApiError:
    return ApiError(
        code="JOB_NOT_FOUND",
        message=f"job not found: {job_id}",
        error_class="validation",
        retryable=False,
        http_status=404,
    )


def _invalid_transition(current: str, new_status: str) -> ApiError:
    return ApiError(
        code="WF_STATE_TRANSITION_INVALID",
        message=f"invalid transition: {current} -> {new_status}",
        error_class="business_rule",
        retryable=False,
        http_status=409,
    )


class JobStore:
    """Single writer of job state; every mutation goes through ALLOWED_TRANSITIONS."""

    ALLOWED_TRANSITIONS: dict[str, set[str]] = {
        STATUS_QUEUED: {STATUS_PROCESSING, STATUS_FAILED},
        STATUS_PROCESSING: {STATUS_COMPLETED, STATUS_FAILED},
        STATUS_COMPLETED: set(),
        STATUS_FAILED: set(),
    }

    def __init__(self, *, jobs_repository: Any = None, documents_repository: Any = None) -> None:
        self.jobs = jobs_repository if jobs_repository is not None else InMemoryJobsRepository()
        self.reference_documents = (
            documents_repository if documents_repository is not None else InMemoryReferenceDocumentsRepository()
        )

    def reset(self) -> None:
        self.jobs.reset()
        self.reference_documents.reset()

    # jobs

    def create(self, job: Job) -> str:
        now = utcnow_iso()
        job.status = STATUS_QUEUED
        job.created_at = now
        job.updated_at = now
        job.started_at = None
        job.completed_at = None
        job.result = None
        job.error_message = None
        job.retry_count = 0
        self.jobs.create(job=job)
        return job.job_id

    def get_by_id(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id=job_id)

    def get_job(self, job_id: str) -> Job:
        job = self.get_by_id(job_id)
        if job is None:
            raise _job_not_found(job_id)
        return job

    def _transition(self, *, job_id: str, new_status: str, fields: dict[str, Any]) -> Job:
        job = self.get_job(job_id)
        current_status = job.status
        if new_status == current_status == STATUS_PROCESSING:
            # redelivered while a previous attempt was mid-run; keep the first started_at
            return job
        if new_status not in self.ALLOWED_TRANSITIONS.get(current_status, set()):
            raise _invalid_transition(current_status, new_status)

        updated = self.jobs.compare_and_update(
            job_id=job_id,
            expected_status=current_status,
            fields={"status": new_status, "updated_at": utcnow_iso(), **fields},
        )
        if updated is None:
            latest = self.get_job(job_id)
            raise _invalid_transition(latest.status, new_status)
        logger.debug("job_transition job_id=%s from=%s to=%s", job_id, current_status, new_status)
        return updated

    def update_status(self, job_id: str, status: str) -> Job:
        if status not in VALID_STATUSES:
            raise ApiError(
                code="JOB_STATUS_INVALID",
                message=f"unknown job status: {status}",
                error_class="validation",
                retryable=False,
                http_status=400,
            )
        if status == STATUS_PROCESSING:
            return self._transition(job_id=job_id, new_status=status, fields={"started_at": utcnow_iso()})
        if status == STATUS_COMPLETED:
            raise ApiError(
                code="WF_STATE_TRANSITION_INVALID",
                message="completed requires a result; use update_result",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            )
        if status == STATUS_FAILED:
            raise ApiError(
                code="WF_STATE_TRANSITION_INVALID",
                message="failed requires an error message; use update_error",
                error_class="business_rule",
                retryable=False,
                http_status=409,
            )
        job = self.get_job(job_id)
        raise _invalid_transition(job.status, status)

    def update_result(self, job_id: str, result: dict[str, Any]) -> Job:
        return self._transition(
            job_id=job_id,
            new_status=STATUS_COMPLETED,
            fields={"result": dict(result), "error_message": None, "completed_at": utcnow_iso()},
        )

    def update_error(self, job_id: str, message: str) -> Job:
        return self._transition(
            job_id=job_id,
            new_status=STATUS_FAILED,
            fields={
                "error_message": message or "unknown error",
                "result": None,
                "completed_at": utcnow_iso(),
            },
        )

    def fail_max_retries(self, job_id: str) -> Job:
        return self.update_error(job_id, MAX_RETRIES_EXCEEDED)

    def increment_retry(self, job_id: str) -> Job:
        job = self.jobs.increment_retry(job_id=job_id, updated_at=utcnow_iso())
        if job is None:
            raise _job_not_found(job_id)
        return job

    def list_pending(self) -> list[Job]:
        return self.jobs.list(statuses=PENDING_STATUSES)

    def list_with_filter(self, *, status: str | None = None, limit: int = 10, offset: int = 0) -> list[Job]:
        statuses = [status] if status else None
        return self.jobs.list(statuses=statuses, limit=max(0, limit), offset=max(0, offset))

    # reference documents

    def create_reference_document(
        self,
        *,
        title: str,
        description: str,
        requirements: str,
        embedding: list[float],
    ) -> ReferenceDocument:
        document = ReferenceDocument(
            document_id=new_document_id(),
            title=title,
            description=description,
            requirements=requirements,
            embedding=[float(x) for x in embedding],
            created_at=utcnow_iso(),
        )
        return self.reference_documents.create(document=document)

    def list_reference_documents(self) -> list[ReferenceDocument]:
        return self.reference_documents.list_all()


def create_store_from_env(environ: Mapping[str, str] | None = None) -> JobStore:
    env = os.environ if environ is None else environ
    backend = env.get("CVEVAL_STORE_BACKEND", "memory").strip().lower()
    if backend == "memory":
        return JobStore()
    if backend == "sqlite":
        db_path = env.get("CVEVAL_STORE_SQLITE_PATH", ".runtime/cveval_store.sqlite3")
        return JobStore(
            jobs_repository=SqliteJobsRepository(db_path),
            documents_repository=SqliteReferenceDocumentsRepository(db_path),
        )
    raise RuntimeError(f"unsupported store backend: {backend}")


store = create_store_from_env()
