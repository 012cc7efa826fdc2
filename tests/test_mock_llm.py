from __future__ import annotations

import json

import pytest

from cveval.errors import ApiError
from cveval.evaluation_nodes import EXTRACT_PROFILE_PROMPT, SCORE_CV_PROMPT, SCORE_PROJECT_PROMPT
from cveval.mock_llm import MockLLMClient, _deterministic_float
from cveval.schemas import CandidateProfile, CVScoreResponse, ProjectScoreResponse, decode_structured
from cveval.similarity import cosine_similarity


def test_deterministic_float_is_stable_and_bounded():
    first = _deterministic_float("seed", 2.5, 5.0)
    assert first == _deterministic_float("seed", 2.5, 5.0)
    assert 2.5 <= first <= 5.0


def test_mock_embeddings_are_deterministic_and_normalised():
    client = MockLLMClient()
    vector = client.generate_embedding("Backend engineer with Python and PostgreSQL")

    assert vector == client.generate_embedding("Backend engineer with Python and PostgreSQL")
    assert len(vector) == 64
    assert sum(x * x for x in vector) == pytest.approx(1.0)


def test_mock_embeddings_place_overlapping_text_closer():
    client = MockLLMClient()
    query = client.generate_embedding("python backend api database")
    near = client.generate_embedding("python backend api postgres database engineer")
    far = client.generate_embedding("oil painting watercolor gallery")

    assert cosine_similarity(query, near) > cosine_similarity(query, far)


def test_mock_embedding_applies_input_rules():
    with pytest.raises(ApiError):
        MockLLMClient().generate_embedding(" a ")


def test_mock_structured_outputs_match_each_stage_schema():
    client = MockLLMClient()
    extract = client.generate_structured_completion(EXTRACT_PROFILE_PROMPT.format(context="ctx", cv_content="cv"))
    cv = client.generate_structured_completion(SCORE_CV_PROMPT.format(context="ctx", profile=extract))
    project = client.generate_structured_completion(
        SCORE_PROJECT_PROMPT.format(context="ctx", project_content="report")
    )

    assert decode_structured(extract, CandidateProfile).ok
    assert decode_structured(cv, CVScoreResponse).ok
    assert decode_structured(project, ProjectScoreResponse).ok
    assert json.loads(client.generate_structured_completion("unrelated")) == {}


def test_mock_completion_is_a_multi_sentence_summary():
    summary = MockLLMClient().generate_completion("summarise")
    assert 3 <= summary.count(". ") + 1 <= 5
