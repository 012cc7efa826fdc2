from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})
PENDING_STATUSES = frozenset({STATUS_QUEUED, STATUS_PROCESSING})

MAX_RETRIES_EXCEEDED = "max retries exceeded"


def utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex[:12]}"


def new_document_id() -> str:
    return f"ref_{uuid.uuid4().hex[:12]}"


@dataclass
class Job:
    job_id: str
    cv_content: str
    project_content: str
    status: str = STATUS_QUEUED
    cv_file: str = ""
    project_file: str = ""
    created_at: str = ""
    updated_at: str = ""
    started_at: str | None = None
    completed_at: str | None = None
    result: dict[str, Any] | None = None
    error_message: str | None = None
    retry_count: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def as_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "cv_file": self.cv_file,
            "project_file": self.project_file,
            "cv_content": self.cv_content,
            "project_content": self.project_content,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "result": self.result,
            "error_message": self.error_message,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        return cls(
            job_id=str(data["job_id"]),
            status=str(data.get("status", STATUS_QUEUED)),
            cv_file=str(data.get("cv_file") or ""),
            project_file=str(data.get("project_file") or ""),
            cv_content=str(data.get("cv_content") or ""),
            project_content=str(data.get("project_content") or ""),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or ""),
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
            result=data.get("result"),
            error_message=data.get("error_message"),
            retry_count=int(data.get("retry_count", 0)),
        )


@dataclass
class ReferenceDocument:
    """Stored job description with a precomputed embedding, used as retrieval context."""

    document_id: str
    title: str
    description: str
    requirements: str
    embedding: list[float] = field(default_factory=list)
    created_at: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "document_id": self.document_id,
            "title": self.title,
            "description": self.description,
            "requirements": self.requirements,
            "embedding": list(self.embedding),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReferenceDocument:
        return cls(
            document_id=str(data["document_id"]),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            requirements=str(data.get("requirements") or ""),
            embedding=[float(x) for x in data.get("embedding") or []],
            created_at=str(data.get("created_at") or ""),
        )


def reference_embedding_text(*, title: str, description: str, requirements: str) -> str:
    return f"Title: {title}\nDescription: {description}\nRequirements: {requirements}"
