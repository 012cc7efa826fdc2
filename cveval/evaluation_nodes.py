"""Evaluation pipeline node functions.

  - EvaluationState TypedDict carries inputs and every stage output
  - node_retrieve_context .. node_summarize each return a partial state update
  - EvaluationOrchestrator runs them strictly in sequence; the first failing
    stage raises StageError and nothing after it runs
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, TypedDict

from pydantic import BaseModel

from cveval import scoring
from cveval.errors import StageError, StructuredResponseError
from cveval.llm_provider import LLMClient, RetryPolicy, create_llm_client_from_env
from cveval.models import Job
from cveval.retrieval import ContextRetriever, create_context_retriever
from cveval.schemas import (
    CandidateProfile,
    CVScoreResponse,
    CVScores,
    EvaluationResult,
    ProjectScoreResponse,
    ProjectScores,
    decode_structured,
)

logger = logging.getLogger(__name__)

STAGE_RETRIEVE = "retrieve"
STAGE_EXTRACT = "extract"
STAGE_SCORE_CV = "score_cv"
STAGE_SCORE_PROJECT = "score_project"
STAGE_SUMMARIZE = "summarize"

DEFAULT_TEMPERATURE = 0.3


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

EXTRACT_PROFILE_PROMPT = """Analyze the following CV and extract structured information.

Job context:
{context}

CV content:
{cv_content}

Return a JSON object with this exact structure:
{{
  "technical_skills": ["skill1", "skill2"],
  "experience_years": 3,
  "projects": [
    {{"name": "project name", "description": "what it does", "technologies": ["tech1"], "impact": "measurable outcome"}}
  ],
  "achievements": ["achievement1"],
  "education": "highest degree and field",
  "certifications": ["certification1"]
}}"""

SCORE_CV_PROMPT = """Evaluate the candidate profile against the job requirements below.

Job context:
{context}

Candidate profile:
{profile}

Score each parameter from 1 to 5:
- Technical Skills Match (backend, databases, APIs, cloud, AI/LLM exposure)
- Experience Level (years and project complexity)
- Relevant Achievements (impact and scale of past work)
- Cultural / Collaboration Fit (communication, learning attitude, teamwork)

Return a JSON object with this exact structure:
{{
  "technical_skills_score": 4,
  "experience_level_score": 3,
  "achievements_score": 4,
  "cultural_fit_score": 4,
  "feedback": "2-3 sentences on strengths and gaps"
}}"""

SCORE_PROJECT_PROMPT = """Evaluate the following project report against the case study brief and scoring rubric.

Job context:
{context}

Project report:
{project_content}

Score each parameter from 1 to 5:
- Correctness (prompt design, LLM chaining, RAG context injection)
- Code Quality & Structure (clean, modular, reusable, tested)
- Resilience & Error Handling (long-running jobs, retries, randomness control)
- Documentation & Explanation (README clarity, setup instructions, trade-offs)
- Creativity / Bonus (extra features beyond requirements)

Return a JSON object with this exact structure:
{{
  "correctness_score": 4,
  "code_quality_score": 4,
  "resilience_score": 3,
  "documentation_score": 4,
  "creativity_score": 3,
  "feedback": "2-3 sentences on strengths and gaps"
}}"""

SUMMARY_PROMPT = """Generate a 3-5 sentence summary of this candidate evaluation.

CV evaluation:
- Match rate: {cv_match_rate}
- Feedback: {cv_feedback}

Project evaluation:
- Score: {project_score} / 5
- Feedback: {project_feedback}

Cover the overall assessment, key strengths, areas for improvement and a hiring recommendation.
Respond in plain prose without headings or lists."""


# ---------------------------------------------------------------------------
# State definition
# ---------------------------------------------------------------------------

class EvaluationState(TypedDict, total=False):
    # inputs
    job_id: str
    cv_content: str
    project_content: str
    # retrieve outputs
    context: str
    # extract outputs
    profile: dict[str, Any]
    # score_cv outputs
    cv_scores: dict[str, float]
    cv_feedback: str
    cv_match_rate: float
    # score_project outputs
    project_scores: dict[str, float]
    project_feedback: str
    project_score: float
    # summarize outputs
    overall_summary: str


# ---------------------------------------------------------------------------
# Node implementations
# ---------------------------------------------------------------------------

def _structured_call(
    *,
    stage: str,
    prompt: str,
    model: type[BaseModel],
    llm: LLMClient,
    retry: RetryPolicy,
) -> Any:
    try:
        raw = retry.call(
            lambda: llm.generate_structured_completion(prompt, temperature=DEFAULT_TEMPERATURE),
            description=stage,
        )
    except Exception as exc:
        raise StageError(stage=stage, message=str(exc)) from exc
    decoded = decode_structured(raw, model)
    if not decoded.ok:
        logger.warning("structured_response_invalid stage=%s error=%s", stage, decoded.error)
        raise StructuredResponseError(stage=stage, message=decoded.error or "invalid response", raw=raw)
    return decoded.value


def node_retrieve_context(state: EvaluationState, *, retriever: ContextRetriever) -> dict[str, Any]:
    try:
        context = retriever.get_relevant_context(state["cv_content"], state["project_content"])
    except Exception as exc:
        raise StageError(stage=STAGE_RETRIEVE, message=str(exc)) from exc
    return {"context": context}


def node_extract_profile(state: EvaluationState, *, llm: LLMClient, retry: RetryPolicy) -> dict[str, Any]:
    """CV text plus job context -> CandidateProfile."""
    prompt = EXTRACT_PROFILE_PROMPT.format(context=state.get("context", ""), cv_content=state["cv_content"])
    profile: CandidateProfile = _structured_call(
        stage=STAGE_EXTRACT,
        prompt=prompt,
        model=CandidateProfile,
        llm=llm,
        retry=retry,
    )
    return {"profile": profile.model_dump()}


def node_score_cv(state: EvaluationState, *, llm: LLMClient, retry: RetryPolicy) -> dict[str, Any]:
    """Four CV sub-scores; match rate is recomputed from the weights, never taken from the model."""
    prompt = SCORE_CV_PROMPT.format(
        context=state.get("context", ""),
        profile=json.dumps(state.get("profile", {}), indent=2),
    )
    response: CVScoreResponse = _structured_call(
        stage=STAGE_SCORE_CV,
        prompt=prompt,
        model=CVScoreResponse,
        llm=llm,
        retry=retry,
    )
    scores = response.scores()
    return {
        "cv_scores": scores,
        "cv_feedback": response.feedback,
        "cv_match_rate": scoring.cv_match_rate(scores),
    }


def node_score_project(state: EvaluationState, *, llm: LLMClient, retry: RetryPolicy) -> dict[str, Any]:
    prompt = SCORE_PROJECT_PROMPT.format(
        context=state.get("context", ""),
        project_content=state["project_content"],
    )
    response: ProjectScoreResponse = _structured_call(
        stage=STAGE_SCORE_PROJECT,
        prompt=prompt,
        model=ProjectScoreResponse,
        llm=llm,
        retry=retry,
    )
    scores = response.scores()
    return {
        "project_scores": scores,
        "project_feedback": response.feedback,
        "project_score": scoring.project_composite(scores),
    }


def node_summarize(state: EvaluationState, *, llm: LLMClient, retry: RetryPolicy) -> dict[str, Any]:
    prompt = SUMMARY_PROMPT.format(
        cv_match_rate=f"{state['cv_match_rate']:.2f}",
        cv_feedback=state.get("cv_feedback", ""),
        project_score=f"{state['project_score']:.2f}",
        project_feedback=state.get("project_feedback", ""),
    )
    try:
        summary = retry.call(
            lambda: llm.generate_completion(prompt, temperature=DEFAULT_TEMPERATURE),
            description=STAGE_SUMMARIZE,
        )
    except Exception as exc:
        raise StageError(stage=STAGE_SUMMARIZE, message=str(exc)) from exc
    summary = (summary or "").strip()
    if not summary:
        raise StageError(stage=STAGE_SUMMARIZE, message="empty summary")
    return {"overall_summary": summary}


# ---------------------------------------------------------------------------
# Result assembly and orchestration
# ---------------------------------------------------------------------------

def build_evaluation_result(state: EvaluationState) -> EvaluationResult:
    cv_scores = state["cv_scores"]
    project_scores = state["project_scores"]
    return EvaluationResult(
        cv_match_rate=state["cv_match_rate"],
        cv_feedback=state.get("cv_feedback", ""),
        project_score=state["project_score"],
        project_feedback=state.get("project_feedback", ""),
        overall_summary=state["overall_summary"],
        cv_scores=CVScores(**cv_scores, composite=scoring.cv_composite(cv_scores)),
        project_scores=ProjectScores(**project_scores, composite=scoring.project_composite(project_scores)),
    )


class EvaluationOrchestrator:
    """Runs retrieve -> extract -> score_cv -> score_project -> summarize for one job."""

    def __init__(
        self,
        *,
        llm: LLMClient,
        retriever: ContextRetriever,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.llm = llm
        self.retriever = retriever
        self.retry = retry or RetryPolicy()

    def run_nodes(self, state: EvaluationState) -> EvaluationState:
        result = dict(state)
        result.update(node_retrieve_context(result, retriever=self.retriever))  # type: ignore[arg-type]
        for node_fn in [node_extract_profile, node_score_cv, node_score_project, node_summarize]:
            updates = node_fn(result, llm=self.llm, retry=self.retry)  # type: ignore[arg-type]
            result.update(updates)
        return result  # type: ignore[return-value]

    def evaluate(self, *, cv_content: str, project_content: str, job_id: str = "") -> EvaluationResult:
        state = self.run_nodes(
            {"job_id": job_id, "cv_content": cv_content, "project_content": project_content}
        )
        return build_evaluation_result(state)

    def run_evaluation(self, job: Job) -> dict[str, Any]:
        logger.info("evaluation_started job_id=%s", job.job_id)
        result = self.evaluate(cv_content=job.cv_content, project_content=job.project_content, job_id=job.job_id)
        logger.info(
            "evaluation_finished job_id=%s cv_match_rate=%.2f project_score=%.2f",
            job.job_id,
            result.cv_match_rate,
            result.project_score,
        )
        return result.model_dump()


def create_orchestrator_from_env(
    *,
    store: Any,
    llm: LLMClient | None = None,
    environ: Mapping[str, str] | None = None,
) -> EvaluationOrchestrator:
    env = os.environ if environ is None else environ
    client = llm if llm is not None else create_llm_client_from_env(env)
    retry = RetryPolicy.from_env(env)
    retriever = create_context_retriever(store=store, llm=client, retry=retry, environ=env)
    return EvaluationOrchestrator(llm=client, retriever=retriever, retry=retry)
