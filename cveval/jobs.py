from __future__ import annotations

import logging
from typing import Any

from cveval.errors import ApiError, input_error
from cveval.llm_provider import prepare_embedding_input
from cveval.models import STATUS_COMPLETED, STATUS_FAILED, Job, new_job_id
from cveval.scoring import build_score_report

logger = logging.getLogger(__name__)


def _validate_content(field_name: str, text: str) -> None:
    # same rules the embedding call enforces, checked before a job exists
    if not text or not text.strip():
        raise input_error(f"{field_name} is required")
    try:
        prepare_embedding_input(text)
    except ApiError as exc:
        raise input_error(f"{field_name}: {exc.message}") from exc


def submit_evaluation(
    *,
    store: Any,
    queue_backend: Any,
    cv_content: str,
    project_content: str,
    cv_file: str = "",
    project_file: str = "",
) -> Job:
    """Persist a queued job and push its id; never waits on the pipeline."""
    _validate_content("cv_content", cv_content)
    _validate_content("project_content", project_content)

    job = Job(
        job_id=new_job_id(),
        cv_content=cv_content,
        project_content=project_content,
        cv_file=cv_file,
        project_file=project_file,
    )
    store.create(job)
    try:
        queue_backend.push(job.job_id)
    except Exception as exc:
        logger.error("job_enqueue_failed job_id=%s error=%s", job.job_id, exc)
        store.update_error(job.job_id, "failed to enqueue job")
        raise ApiError(
            code="QUEUE_UNAVAILABLE",
            message="failed to enqueue evaluation job",
            error_class="transient",
            retryable=True,
            http_status=503,
        ) from exc
    logger.info("job_submitted job_id=%s", job.job_id)
    return store.get_job(job.job_id)


def job_view(job: Job) -> dict[str, Any]:
    """Polling representation: result only when completed, error only when failed."""
    view: dict[str, Any] = {
        "id": job.job_id,
        "status": job.status,
        "cv_file": job.cv_file,
        "project_file": job.project_file,
        "retry_count": job.retry_count,
        "created_at": job.created_at,
        "updated_at": job.updated_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
    }
    if job.status == STATUS_COMPLETED:
        view["result"] = job.result
    if job.status == STATUS_FAILED:
        view["error"] = job.error_message
    return view


def job_status(job: Job) -> dict[str, Any]:
    """Status-only view; failed jobs keep their error so clients need not read /result."""
    view = job_view(job)
    view.pop("result", None)
    return view


def list_jobs(*, store: Any, status: str | None = None, limit: int = 10, offset: int = 0) -> dict[str, Any]:
    jobs = store.list_with_filter(status=status, limit=limit, offset=offset)
    return {
        "items": [job_view(job) for job in jobs],
        "total": len(jobs),
        "limit": limit,
        "offset": offset,
    }


def job_report(*, store: Any, job_id: str) -> dict[str, Any]:
    job = store.get_job(job_id)
    if job.status != STATUS_COMPLETED or not job.result:
        raise ApiError(
            code="JOB_NOT_COMPLETED",
            message=f"job is {job.status}; report is available once completed",
            error_class="business_rule",
            retryable=job.status not in {STATUS_FAILED},
            http_status=409,
        )
    return {"id": job.job_id, **build_score_report(job.result)}
