import pytest

from cveval.errors import ApiError
from cveval.models import MAX_RETRIES_EXCEEDED, Job, new_job_id
from cveval.store import store


def _create_job() -> str:
    return store.create(Job(job_id=new_job_id(), cv_content="cv text", project_content="project text"))


def test_create_starts_queued_with_zero_retries():
    job_id = _create_job()
    job = store.get_job(job_id)

    assert job.status == "queued"
    assert job.retry_count == 0
    assert job.created_at == job.updated_at
    assert job.result is None and job.error_message is None


def test_happy_path_queued_processing_completed():
    job_id = _create_job()

    processing = store.update_status(job_id, "processing")
    assert processing.status == "processing"
    assert processing.started_at is not None

    completed = store.update_result(job_id, {"cv_match_rate": 0.8})
    assert completed.status == "completed"
    assert completed.result == {"cv_match_rate": 0.8}
    assert completed.error_message is None
    assert completed.started_at <= completed.completed_at


def test_processing_failure_stores_error_without_result():
    job_id = _create_job()
    store.update_status(job_id, "processing")

    failed = store.update_error(job_id, "extract stage failed: boom")

    assert failed.status == "failed"
    assert failed.error_message == "extract stage failed: boom"
    assert failed.result is None
    assert failed.completed_at is not None


def test_reentering_processing_keeps_started_at():
    job_id = _create_job()
    first = store.update_status(job_id, "processing")

    again = store.update_status(job_id, "processing")

    assert again.status == "processing"
    assert again.started_at == first.started_at


@pytest.mark.parametrize("terminal", ["completed", "failed"])
def test_nothing_leaves_a_terminal_state(terminal):
    job_id = _create_job()
    store.update_status(job_id, "processing")
    if terminal == "completed":
        store.update_result(job_id, {"ok": True})
    else:
        store.update_error(job_id, "boom")

    with pytest.raises(ApiError) as exc:
        store.update_status(job_id, "processing")
    assert exc.value.code == "WF_STATE_TRANSITION_INVALID"
    assert exc.value.http_status == 409

    with pytest.raises(ApiError):
        store.update_result(job_id, {"ok": False})
    with pytest.raises(ApiError):
        store.update_error(job_id, "again")
    assert store.get_job(job_id).status == terminal


def test_queued_cannot_complete_directly():
    job_id = _create_job()

    with pytest.raises(ApiError) as exc:
        store.update_result(job_id, {"ok": True})

    assert exc.value.code == "WF_STATE_TRANSITION_INVALID"
    assert store.get_job(job_id).status == "queued"


def test_update_status_rejects_terminal_targets_and_unknown_status():
    job_id = _create_job()

    with pytest.raises(ApiError) as completed_exc:
        store.update_status(job_id, "completed")
    assert completed_exc.value.http_status == 409

    with pytest.raises(ApiError) as unknown_exc:
        store.update_status(job_id, "running")
    assert unknown_exc.value.code == "JOB_STATUS_INVALID"


def test_max_retries_fails_from_queued():
    job_id = _create_job()

    failed = store.fail_max_retries(job_id)

    assert failed.status == "failed"
    assert failed.error_message == MAX_RETRIES_EXCEEDED


def test_retry_counter_is_monotonic():
    job_id = _create_job()
    counts = [store.increment_retry(job_id).retry_count for _ in range(3)]
    assert counts == [1, 2, 3]


def test_unknown_job_raises_not_found():
    assert store.get_by_id("job_missing") is None
    with pytest.raises(ApiError) as exc:
        store.update_status("job_missing", "processing")
    assert exc.value.code == "JOB_NOT_FOUND"
    assert exc.value.http_status == 404
    with pytest.raises(ApiError):
        store.increment_retry("job_missing")


def test_list_pending_and_filter():
    queued_id = _create_job()
    processing_id = _create_job()
    done_id = _create_job()
    store.update_status(processing_id, "processing")
    store.update_status(done_id, "processing")
    store.update_result(done_id, {"ok": True})

    pending_ids = {job.job_id for job in store.list_pending()}
    assert pending_ids == {queued_id, processing_id}

    completed = store.list_with_filter(status="completed")
    assert [job.job_id for job in completed] == [done_id]
    assert len(store.list_with_filter(limit=2)) == 2
    assert len(store.list_with_filter(limit=10, offset=2)) == 1
