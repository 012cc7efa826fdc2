"""Tests for the evaluation pipeline node functions and orchestrator."""

from __future__ import annotations

import json

import pytest
from conftest import ScriptedLLM

from cveval.errors import StageError, StructuredResponseError
from cveval.evaluation_nodes import (
    EvaluationOrchestrator,
    create_orchestrator_from_env,
    node_extract_profile,
    node_score_cv,
    node_score_project,
    node_summarize,
)
from cveval.llm_provider import RetryPolicy
from cveval.mock_llm import MockLLMClient
from cveval.models import Job
from cveval.retrieval import ContextRetriever
from cveval.seed import seed_reference_documents
from cveval.similarity import LinearScanIndex
from cveval.store import store

PROFILE = json.dumps(
    {
        "technical_skills": ["Python", "PostgreSQL"],
        "experience_years": 4,
        "projects": [{"name": "Queue", "description": "jobs", "technologies": ["Redis"], "impact": "fast"}],
        "achievements": ["Scaled API"],
        "education": "BSc",
        "certifications": [],
    }
)
CV_SCORES = json.dumps(
    {
        "technical_skills_score": 5,
        "experience_level_score": 5,
        "achievements_score": 5,
        "cultural_fit_score": 5,
        "match_rate": 0.1,
        "feedback": "Excellent match",
    }
)
PROJECT_SCORES = json.dumps(
    {
        "correctness_score": 4,
        "code_quality_score": 4,
        "resilience_score": 3,
        "documentation_score": 4,
        "creativity_score": 3,
        "overall_score": 1.0,
        "feedback": "Solid implementation",
    }
)
SUMMARY = "Strong candidate. Good project. Needs docs. Recommend interview."


def _retry() -> RetryPolicy:
    return RetryPolicy(attempts=3, backoff_unit_s=0.0, sleep=lambda _: None)


def _orchestrator(llm) -> EvaluationOrchestrator:
    retriever = ContextRetriever(llm=llm, index=LinearScanIndex(store.list_reference_documents), retry=_retry())
    return EvaluationOrchestrator(llm=llm, retriever=retriever, retry=_retry())


def _happy_llm(**overrides) -> ScriptedLLM:
    params = {
        "default_embedding": [1.0, 0.0],
        "structured": [PROFILE, CV_SCORES, PROJECT_SCORES],
        "completions": [SUMMARY],
    }
    params.update(overrides)
    return ScriptedLLM(**params)


def test_full_pipeline_builds_result_with_recomputed_composites():
    store.create_reference_document(title="Backend", description="APIs", requirements="Python", embedding=[1.0, 0.0])
    llm = _happy_llm()

    result = _orchestrator(llm).evaluate(cv_content="cv text", project_content="project text")

    # model-reported match_rate / overall_score are ignored
    assert result.cv_match_rate == 1.0
    assert result.project_score == 3.7
    assert result.cv_scores.composite == 5.0
    assert result.project_scores.composite == 3.7
    assert result.project_scores.weights["correctness"] == 0.30
    assert result.cv_feedback == "Excellent match"
    assert result.project_feedback == "Solid implementation"
    assert result.overall_summary == SUMMARY

    kinds = [kind for kind, _ in llm.calls]
    assert kinds == ["embedding", "embedding", "structured", "structured", "structured", "completion"]
    extract_prompt = llm.calls[2][1]
    assert "Title: Backend" in extract_prompt
    assert "cv text" in extract_prompt


def test_stage_prompts_carry_previous_outputs():
    llm = _happy_llm()

    _orchestrator(llm).evaluate(cv_content="cv text", project_content="project report body")

    score_cv_prompt = llm.calls[3][1]
    score_project_prompt = llm.calls[4][1]
    summary_prompt = llm.calls[5][1]
    assert '"experience_years": 4' in score_cv_prompt
    assert "project report body" in score_project_prompt
    assert "Match rate: 1.00" in summary_prompt
    assert "Score: 3.70 / 5" in summary_prompt


def test_code_fenced_structured_response_is_accepted():
    llm = _happy_llm(structured=[f"```json\n{PROFILE}\n```", CV_SCORES, PROJECT_SCORES])
    result = _orchestrator(llm).evaluate(cv_content="cv", project_content="project")
    assert result.cv_match_rate == 1.0


def test_unparseable_response_aborts_with_structured_error():
    llm = _happy_llm(structured=[PROFILE, "not json at all"])

    with pytest.raises(StructuredResponseError) as exc:
        _orchestrator(llm).evaluate(cv_content="cv", project_content="project")

    assert exc.value.stage == "score_cv"
    assert exc.value.raw == "not json at all"
    # later stages never ran
    assert [kind for kind, _ in llm.calls].count("completion") == 0


def test_out_of_range_score_fails_the_stage():
    bad = json.loads(PROJECT_SCORES)
    bad["resilience_score"] = 6
    llm = _happy_llm(structured=[PROFILE, CV_SCORES, json.dumps(bad)])

    with pytest.raises(StageError) as exc:
        _orchestrator(llm).evaluate(cv_content="cv", project_content="project")

    assert exc.value.stage == "score_project"


def test_transient_llm_errors_are_retried_inside_a_stage():
    llm = _happy_llm(structured=[RuntimeError("timeout"), PROFILE, CV_SCORES, PROJECT_SCORES])

    result = _orchestrator(llm).evaluate(cv_content="cv", project_content="project")

    assert result.overall_summary == SUMMARY


def test_retry_exhaustion_becomes_stage_failure():
    llm = _happy_llm(completions=[RuntimeError("a"), RuntimeError("b"), RuntimeError("c")])

    with pytest.raises(StageError) as exc:
        _orchestrator(llm).evaluate(cv_content="cv", project_content="project")

    assert exc.value.stage == "summarize"
    assert "failed after 3 attempts" in str(exc.value)


def test_embedding_failure_is_a_retrieve_stage_failure():
    llm = ScriptedLLM(embeddings=[RuntimeError("down")] * 3)

    with pytest.raises(StageError) as exc:
        _orchestrator(llm).evaluate(cv_content="cv", project_content="project")

    assert exc.value.stage == "retrieve"
    assert [kind for kind, _ in llm.calls] == ["embedding"] * 3


def test_empty_summary_is_rejected():
    llm = _happy_llm(completions=["   "])
    with pytest.raises(StageError, match="empty summary"):
        _orchestrator(llm).evaluate(cv_content="cv", project_content="project")


def test_nodes_return_partial_state_updates():
    llm = _happy_llm()
    retry = _retry()
    state = {"cv_content": "cv", "project_content": "project", "context": "ctx"}

    extract = node_extract_profile(state, llm=llm, retry=retry)
    assert set(extract) == {"profile"}
    state.update(extract)
    cv = node_score_cv(state, llm=llm, retry=retry)
    assert set(cv) == {"cv_scores", "cv_feedback", "cv_match_rate"}
    state.update(cv)
    project = node_score_project(state, llm=llm, retry=retry)
    assert set(project) == {"project_scores", "project_feedback", "project_score"}
    state.update(project)
    assert node_summarize(state, llm=llm, retry=retry) == {"overall_summary": SUMMARY}


def test_mock_backed_orchestrator_produces_valid_result():
    llm = MockLLMClient()
    seed_reference_documents(store=store, llm=llm)
    orchestrator = create_orchestrator_from_env(store=store, llm=llm, environ={"LLM_BACKOFF_UNIT_S": "0"})
    job = Job(job_id="job_mock", cv_content="Python backend engineer", project_content="LLM pipeline report")

    first = orchestrator.run_evaluation(job)
    second = orchestrator.run_evaluation(job)

    assert first == second
    assert 0 <= first["cv_match_rate"] <= 1
    assert 0 <= first["project_score"] <= 5
    assert set(first["cv_scores"]) >= {"technical_skills", "weights", "composite"}
