"""
Deterministic mock LLM client.

Used when no provider is configured or MOCK_LLM_ENABLED=true. Identical input
always produces identical output, so the whole pipeline can run offline.
"""

from __future__ import annotations

import hashlib
import json
import math
import re
from typing import Any

from cveval.llm_provider import prepare_embedding_input

MOCK_EMBEDDING_DIM = 64

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def _deterministic_float(seed: str, min_val: float = 0.0, max_val: float = 1.0) -> float:
    """Map ``seed`` to a stable float in [min_val, max_val]."""
    h = hashlib.sha256(seed.encode()).hexdigest()
    val = int(h[:8], 16) / 0xFFFFFFFF
    return min_val + val * (max_val - min_val)


def _score(seed: str) -> float:
    return round(_deterministic_float(seed, 2.5, 5.0), 1)


def mock_embedding(text: str, *, dim: int = MOCK_EMBEDDING_DIM) -> list[float]:
    """Hashed bag-of-words vector, L2-normalised; texts sharing words land close together."""
    vector = [0.0] * dim
    for token in _TOKEN_RE.findall(text.lower()):
        bucket = int(hashlib.sha256(token.encode()).hexdigest()[:8], 16) % dim
        vector[bucket] += 1.0
    norm = math.sqrt(sum(x * x for x in vector))
    if norm == 0:
        return vector
    return [x / norm for x in vector]


def mock_candidate_profile(prompt: str) -> dict[str, Any]:
    seed = hashlib.sha256(prompt.encode()).hexdigest()[:16]
    return {
        "technical_skills": ["Python", "REST APIs", "SQL", "Docker"],
        "experience_years": int(_deterministic_float(f"{seed}:years", 1, 8)),
        "projects": [
            {
                "name": "Evaluation Service",
                "description": "Backend service for asynchronous document evaluation",
                "technologies": ["Python", "Redis"],
                "impact": "Reduced manual review time",
            }
        ],
        "achievements": ["Shipped a production backend service"],
        "education": "B.Sc. Computer Science",
        "certifications": [],
    }


def mock_cv_scores(prompt: str) -> dict[str, Any]:
    seed = hashlib.sha256(prompt.encode()).hexdigest()[:16]
    return {
        "technical_skills_score": _score(f"{seed}:technical"),
        "experience_level_score": _score(f"{seed}:experience"),
        "achievements_score": _score(f"{seed}:achievements"),
        "cultural_fit_score": _score(f"{seed}:culture"),
        "feedback": "Solid backend foundation with relevant tooling experience; "
        "depth in AI/LLM integration could be demonstrated further.",
    }


def mock_project_scores(prompt: str) -> dict[str, Any]:
    seed = hashlib.sha256(prompt.encode()).hexdigest()[:16]
    return {
        "correctness_score": _score(f"{seed}:correctness"),
        "code_quality_score": _score(f"{seed}:quality"),
        "resilience_score": _score(f"{seed}:resilience"),
        "documentation_score": _score(f"{seed}:docs"),
        "creativity_score": _score(f"{seed}:creativity"),
        "feedback": "Pipeline is implemented end to end with reasonable structure; "
        "error handling and documentation can be tightened.",
    }


class MockLLMClient:
    """Offline LLMClient; structured prompts are recognised by the JSON keys they request."""

    def __init__(self, *, dim: int = MOCK_EMBEDDING_DIM) -> None:
        self.dim = dim

    def generate_embedding(self, text: str) -> list[float]:
        return mock_embedding(prepare_embedding_input(text), dim=self.dim)

    def generate_completion(self, prompt: str, temperature: float = 0.3) -> str:
        return (
            "The candidate shows a credible backend profile that matches the core of the role. "
            "Strengths include practical API and data-store experience and a working project submission. "
            "The main gaps are limited evidence of production LLM work and thin documentation. "
            "Recommendation: proceed to a technical interview."
        )

    def generate_structured_completion(self, prompt: str, temperature: float = 0.3) -> str:
        if '"creativity_score"' in prompt:
            payload = mock_project_scores(prompt)
        elif '"cultural_fit_score"' in prompt:
            payload = mock_cv_scores(prompt)
        elif '"experience_years"' in prompt:
            payload = mock_candidate_profile(prompt)
        else:
            payload = {}
        return json.dumps(payload)
