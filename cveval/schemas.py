from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

from cveval import scoring

M = TypeVar("M", bound=BaseModel)


class EvaluateRequest(BaseModel):
    cv_content: str = Field(min_length=1)
    project_content: str = Field(min_length=1)
    cv_file: str = ""
    project_file: str = ""


class ReferenceDocumentRequest(BaseModel):
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    requirements: str = Field(min_length=1)


class CandidateProject(BaseModel):
    name: str = ""
    description: str = ""
    technologies: list[str] = Field(default_factory=list)
    impact: str = ""


class CandidateProfile(BaseModel):
    technical_skills: list[str] = Field(default_factory=list)
    experience_years: float = Field(default=0, ge=0)
    projects: list[CandidateProject] = Field(default_factory=list)
    achievements: list[str] = Field(default_factory=list)
    education: str = ""
    certifications: list[str] = Field(default_factory=list)

    @field_validator("education", mode="before")
    @classmethod
    def _join_education(cls, value: Any) -> Any:
        # models sometimes answer with a list of degrees
        if isinstance(value, list):
            return "; ".join(str(x) for x in value)
        return value


class _ScoreModel(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _validate_range(cls, value: Any, info: ValidationInfo) -> Any:
        if info.field_name.endswith("_score"):
            return scoring.validate_score(value)
        return value


class CVScoreResponse(_ScoreModel):
    technical_skills_score: float
    experience_level_score: float
    achievements_score: float
    cultural_fit_score: float
    feedback: str = ""

    def scores(self) -> dict[str, float]:
        return {
            "technical_skills": self.technical_skills_score,
            "experience_level": self.experience_level_score,
            "achievements": self.achievements_score,
            "cultural_fit": self.cultural_fit_score,
        }


class ProjectScoreResponse(_ScoreModel):
    correctness_score: float
    code_quality_score: float
    resilience_score: float
    documentation_score: float
    creativity_score: float
    feedback: str = ""

    def scores(self) -> dict[str, float]:
        return {
            "correctness": self.correctness_score,
            "code_quality": self.code_quality_score,
            "resilience": self.resilience_score,
            "documentation": self.documentation_score,
            "creativity": self.creativity_score,
        }


class CVScores(BaseModel):
    technical_skills: float = Field(ge=0, le=5)
    experience_level: float = Field(ge=0, le=5)
    achievements: float = Field(ge=0, le=5)
    cultural_fit: float = Field(ge=0, le=5)
    weights: dict[str, float] = Field(default_factory=lambda: dict(scoring.CV_WEIGHTS))
    composite: float = Field(ge=0, le=5)


class ProjectScores(BaseModel):
    correctness: float = Field(ge=0, le=5)
    code_quality: float = Field(ge=0, le=5)
    resilience: float = Field(ge=0, le=5)
    documentation: float = Field(ge=0, le=5)
    creativity: float = Field(ge=0, le=5)
    weights: dict[str, float] = Field(default_factory=lambda: dict(scoring.PROJECT_WEIGHTS))
    composite: float = Field(ge=0, le=5)


class EvaluationResult(BaseModel):
    cv_match_rate: float = Field(ge=0, le=1)
    cv_feedback: str
    project_score: float = Field(ge=0, le=5)
    project_feedback: str
    overall_summary: str
    cv_scores: CVScores
    project_scores: ProjectScores


@dataclass(frozen=True)
class DecodeResult(Generic[M]):
    """Either ``value`` (ok) or ``error`` plus the raw text that failed to decode."""

    value: M | None = None
    error: str | None = None
    raw: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


_FENCE_RE = re.compile(r"^```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?```$", re.DOTALL)


def strip_code_fences(raw: str) -> str:
    text = raw.strip()
    match = _FENCE_RE.match(text)
    if match:
        return match.group(1).strip()
    return text


def decode_structured(raw: str, model: type[M]) -> DecodeResult[M]:
    text = strip_code_fences(raw or "")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        return DecodeResult(error=f"invalid JSON: {exc.msg}", raw=raw)
    if not isinstance(payload, dict):
        return DecodeResult(error="expected a JSON object", raw=raw)
    try:
        return DecodeResult(value=model.model_validate(payload), raw=raw)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(x) for x in first.get("loc", ()))
        detail = first.get("msg", "schema mismatch")
        return DecodeResult(error=f"schema mismatch at {loc or '<root>'}: {detail}", raw=raw)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
