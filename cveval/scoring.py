"""Deterministic scoring helpers shared by the evaluation pipeline and reports.

All sub-scores live on a 0-5 scale. Composites are rounded half away from zero
to two decimals.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from typing import Any

MIN_SCORE = 0.0
MAX_SCORE = 5.0

CV_WEIGHTS: dict[str, float] = {
    "technical_skills": 0.40,
    "experience_level": 0.25,
    "achievements": 0.20,
    "cultural_fit": 0.15,
}

PROJECT_WEIGHTS: dict[str, float] = {
    "correctness": 0.30,
    "code_quality": 0.25,
    "resilience": 0.20,
    "documentation": 0.15,
    "creativity": 0.10,
}

OVERALL_CV_WEIGHT = 0.6
OVERALL_PROJECT_WEIGHT = 0.4

SCORE_LABELS: list[tuple[float, str, str]] = [
    (4.5, "Excellent", "Highly recommended"),
    (4.0, "Very Good", "Strong candidate"),
    (3.5, "Good", "Solid candidate"),
    (3.0, "Average", "Consider with reservations"),
    (2.5, "Below Average", "Not recommended"),
]
LOWEST_LABEL = ("Poor", "Not suitable")


def round2(value: float) -> float:
    scaled = math.floor(abs(value) * 100 + 0.5) / 100
    return math.copysign(scaled, value) if value else 0.0


def validate_score(score: float) -> float:
    if isinstance(score, bool) or not isinstance(score, (int, float)) or math.isnan(score):
        raise ValueError(f"score must be a number, got {score!r}")
    if score < MIN_SCORE or score > MAX_SCORE:
        raise ValueError(f"score must be between 0 and 5, got {score}")
    return float(score)


def weighted_sum(scores: Mapping[str, float], weights: Mapping[str, float]) -> float:
    missing = [name for name in weights if name not in scores]
    if missing:
        raise ValueError(f"missing sub-scores: {', '.join(missing)}")
    return sum(float(scores[name]) * weight for name, weight in weights.items())


def cv_composite(scores: Mapping[str, float]) -> float:
    return round2(weighted_sum(scores, CV_WEIGHTS))


def cv_match_rate(scores: Mapping[str, float]) -> float:
    return round2(weighted_sum(scores, CV_WEIGHTS) / MAX_SCORE)


def project_composite(scores: Mapping[str, float]) -> float:
    return round2(weighted_sum(scores, PROJECT_WEIGHTS))


def overall_composite(cv_score: float, project_score: float) -> float:
    return round2(cv_score * OVERALL_CV_WEIGHT + project_score * OVERALL_PROJECT_WEIGHT)


def normalize_score(score: float, max_score: float) -> float:
    if max_score == 0:
        return 0.0
    return min(score / max_score, 1.0)


def interpret_score(score: float) -> str:
    for threshold, label, _ in SCORE_LABELS:
        if score >= threshold:
            return label
    return LOWEST_LABEL[0]


def describe_score(score: float) -> str:
    for threshold, label, recommendation in SCORE_LABELS:
        if score >= threshold:
            return f"{label} - {recommendation}"
    return f"{LOWEST_LABEL[0]} - {LOWEST_LABEL[1]}"


def score_breakdown(cv_scores: Mapping[str, float], project_scores: Mapping[str, float]) -> dict[str, Any]:
    cv_overall = cv_composite(cv_scores)
    project_overall = project_composite(project_scores)
    return {
        "cv_scores": {**{name: float(cv_scores[name]) for name in CV_WEIGHTS}, "overall": cv_overall},
        "project_scores": {
            **{name: float(project_scores[name]) for name in PROJECT_WEIGHTS},
            "overall": project_overall,
        },
        "overall_score": overall_composite(cv_overall, project_overall),
    }


def build_score_report(result: Mapping[str, Any]) -> dict[str, Any]:
    """Summarise a persisted evaluation result for display."""
    cv_scores = result.get("cv_scores") or {}
    project_scores = result.get("project_scores") or {}
    breakdown = score_breakdown(cv_scores, project_scores)
    overall = breakdown["overall_score"]
    return {
        "summary": {
            "overall_score": overall,
            "overall_label": interpret_score(overall),
            "overall_interpretation": describe_score(overall),
            "cv_match_rate": result.get("cv_match_rate"),
            "project_score": result.get("project_score"),
        },
        "cv_evaluation": {
            "match_rate": result.get("cv_match_rate"),
            "feedback": result.get("cv_feedback", ""),
            "scores": breakdown["cv_scores"],
        },
        "project_evaluation": {
            "score": result.get("project_score"),
            "feedback": result.get("project_feedback", ""),
            "scores": breakdown["project_scores"],
        },
        "overall_summary": result.get("overall_summary", ""),
        "breakdown": breakdown,
    }


def compare_scores(score_a: float, score_b: float) -> dict[str, Any]:
    diff = score_a - score_b
    percentage_diff = round2(diff / score_b * 100) if score_b else None
    return {
        "score1": score_a,
        "score2": score_b,
        "difference": round2(diff),
        "percentage_diff": percentage_diff,
        "higher": score_a > score_b,
    }


def score_statistics(scores: Sequence[float]) -> dict[str, Any]:
    if not scores:
        return {"count": 0, "mean": 0.0, "min": 0.0, "max": 0.0}
    return {
        "count": len(scores),
        "mean": round2(sum(scores) / len(scores)),
        "min": min(scores),
        "max": max(scores),
    }
