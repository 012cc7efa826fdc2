from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from cveval.errors import ApiError
from cveval.evaluation_nodes import create_orchestrator_from_env
from cveval.jobs import job_report, job_status, job_view, list_jobs, submit_evaluation
from cveval.llm_provider import RetryPolicy, create_llm_client_from_env, get_provider_info
from cveval.models import STATUS_FAILED
from cveval.queue_backend import create_queue_from_env
from cveval.retrieval import add_reference_document
from cveval.schemas import EvaluateRequest, ReferenceDocumentRequest, error_envelope, success_envelope
from cveval.seed import seed_reference_documents
from cveval.store import store
from cveval.worker_runtime import WorkerRuntime, create_worker_runtime_from_env

logger = logging.getLogger(__name__)

queue_backend = create_queue_from_env()


def _embedded_worker_enabled(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return env.get("WORKER_EMBEDDED", "true").strip().lower() in {"1", "true", "yes", "on"}


def _trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def _error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, object] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=_trace_id_from_request(request),
            details=details,
        ),
    )


def _start_embedded_worker(app: FastAPI) -> WorkerRuntime:
    orchestrator = create_orchestrator_from_env(store=store)
    try:
        seed_reference_documents(store=store, llm=orchestrator.llm, retry=orchestrator.retry)
    except Exception:
        # jobs still run; retrieval just sees an empty corpus
        logger.exception("reference_seed_failed")
    worker = create_worker_runtime_from_env(store=store, queue_backend=queue_backend, orchestrator=orchestrator)
    worker.start()
    app.state.worker = worker
    return worker


@asynccontextmanager
async def _lifespan(app: FastAPI):
    app.state.worker = None
    if _embedded_worker_enabled():
        _start_embedded_worker(app)
    try:
        yield
    finally:
        worker = app.state.worker
        if worker is not None:
            worker.stop()


def create_app() -> FastAPI:
    app = FastAPI(title="CV Evaluation API", version="0.1.0", lifespan=_lifespan)
    app.state.worker = None

    @app.middleware("http")
    async def add_trace_id(request: Request, call_next):
        request.state.trace_id = request.headers.get("x-trace-id", "").strip() or uuid.uuid4().hex
        response = await call_next(request)
        response.headers["x-trace-id"] = _trace_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return _error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return _error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return _error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        data = {"status": "ok", "llm": get_provider_info()}
        return success_envelope(data, _trace_id_from_request(request))

    @app.post("/api/v1/evaluate")
    def evaluate(payload: EvaluateRequest, request: Request):
        job = submit_evaluation(
            store=store,
            queue_backend=queue_backend,
            cv_content=payload.cv_content,
            project_content=payload.project_content,
            cv_file=payload.cv_file,
            project_file=payload.project_file,
        )
        data = {"id": job.job_id, "status": job.status}
        return JSONResponse(
            status_code=202,
            content=success_envelope(data, _trace_id_from_request(request), message="evaluation queued"),
        )

    @app.get("/api/v1/result/{job_id}")
    def get_result(job_id: str, request: Request):
        job = store.get_job(job_id)
        if job.status == STATUS_FAILED:
            return _error_response(
                request,
                code="JOB_FAILED",
                message=job.error_message or "evaluation failed",
                error_class="internal",
                retryable=False,
                status_code=500,
                details=job_view(job),
            )
        return success_envelope(job_view(job), _trace_id_from_request(request))

    @app.get("/api/v1/job/{job_id}")
    def get_job_status(job_id: str, request: Request):
        return success_envelope(job_status(store.get_job(job_id)), _trace_id_from_request(request))

    @app.get("/api/v1/result/{job_id}/report")
    def get_report(job_id: str, request: Request):
        return success_envelope(job_report(store=store, job_id=job_id), _trace_id_from_request(request))

    @app.get("/api/v1/jobs")
    def get_jobs(
        request: Request,
        status: Literal["queued", "processing", "completed", "failed"] | None = None,
        limit: int = Query(default=10, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
    ):
        data = list_jobs(store=store, status=status, limit=limit, offset=offset)
        return success_envelope(data, _trace_id_from_request(request))

    @app.get("/api/v1/queue/status")
    def queue_status(request: Request):
        worker = app.state.worker
        if worker is not None:
            data = worker.queue_status()
        else:
            data = {
                "queue_length": queue_backend.length(),
                "pending_jobs": len(store.list_pending()),
                "status": "stopped",
            }
        return success_envelope(data, _trace_id_from_request(request))

    @app.post("/api/v1/reference-documents")
    def create_reference_document(payload: ReferenceDocumentRequest, request: Request):
        worker = app.state.worker
        llm = worker.orchestrator.llm if worker is not None else create_llm_client_from_env()
        document = add_reference_document(
            store=store,
            llm=llm,
            title=payload.title,
            description=payload.description,
            requirements=payload.requirements,
            retry=RetryPolicy.from_env(),
        )
        data = {key: value for key, value in document.as_dict().items() if key != "embedding"}
        return JSONResponse(status_code=201, content=success_envelope(data, _trace_id_from_request(request)))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    uvicorn.run(app, host=os.environ.get("HOST", "0.0.0.0"), port=int(os.environ.get("PORT", "8080")))
