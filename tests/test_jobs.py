from __future__ import annotations

import pytest

from cveval.errors import ApiError
from cveval.jobs import job_report, job_status, job_view, submit_evaluation
from cveval.models import Job
from cveval.queue_backend import InMemoryQueueBackend
from cveval.store import store

CV = "Backend engineer with Go and Python experience"
PROJECT = "Built an async evaluation service"


class RejectingQueue(InMemoryQueueBackend):
    def push(self, job_id: str) -> None:
        raise ConnectionError("queue down")


def _submit() -> Job:
    return submit_evaluation(store=store, queue_backend=InMemoryQueueBackend(), cv_content=CV, project_content=PROJECT)


def test_submit_creates_queued_job_and_pushes_id():
    queue = InMemoryQueueBackend()

    job = submit_evaluation(store=store, queue_backend=queue, cv_content=CV, project_content=PROJECT)

    assert job.status == "queued"
    assert job.job_id.startswith("job_")
    assert queue.peek() == job.job_id


def test_submit_validates_before_creating_anything():
    queue = InMemoryQueueBackend()

    with pytest.raises(ApiError):
        submit_evaluation(store=store, queue_backend=queue, cv_content=CV, project_content="")

    assert store.list_with_filter() == []
    assert queue.length() == 0


@pytest.mark.parametrize(
    "cv_content, message",
    [
        ("ab", "cv_content: input text is invalid"),
        ("  ab  ", "cv_content: input text is invalid"),
        ("python\x00developer", "cv_content: input text contains null bytes"),
    ],
)
def test_submit_rejects_text_the_embedder_would_refuse(cv_content, message):
    queue = InMemoryQueueBackend()

    with pytest.raises(ApiError) as exc:
        submit_evaluation(store=store, queue_backend=queue, cv_content=cv_content, project_content=PROJECT)

    assert exc.value.code == "INPUT_INVALID"
    assert exc.value.http_status == 400
    assert exc.value.retryable is False
    assert exc.value.message == message
    assert store.list_with_filter() == []
    assert queue.length() == 0


def test_enqueue_failure_marks_job_failed():
    with pytest.raises(ApiError) as exc:
        submit_evaluation(store=store, queue_backend=RejectingQueue(), cv_content=CV, project_content=PROJECT)

    assert exc.value.code == "QUEUE_UNAVAILABLE"
    assert exc.value.http_status == 503
    [job] = store.list_with_filter()
    assert job.status == "failed"
    assert job.error_message == "failed to enqueue job"


def test_job_view_exposes_result_or_error_by_status():
    job = _submit()
    store.update_status(job.job_id, "processing")
    done = store.update_result(job.job_id, {"cv_match_rate": 0.5})

    view = job_view(done)
    assert view["result"] == {"cv_match_rate": 0.5}
    assert "error" not in view


def test_job_status_omits_result_but_keeps_error():
    done = _submit()
    store.update_status(done.job_id, "processing")
    done = store.update_result(done.job_id, {"cv_match_rate": 0.5})
    failed = _submit()
    store.update_status(failed.job_id, "processing")
    failed = store.update_error(failed.job_id, "score_cv stage failed: timeout")

    assert "result" not in job_status(done)
    assert job_status(done)["completed_at"]
    assert job_status(failed)["error"] == "score_cv stage failed: timeout"


def test_job_report_for_pending_job_is_rejected():
    job = _submit()
    with pytest.raises(ApiError) as exc:
        job_report(store=store, job_id=job.job_id)
    assert exc.value.http_status == 409
