from __future__ import annotations

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from cveval.models import ReferenceDocument


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine of the angle between two vectors.

    Returns 0.0 for mismatched dimensions or a zero-norm vector instead of
    raising, so one malformed embedding cannot halt a search.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    value = dot / math.sqrt(norm_a * norm_b)
    return max(-1.0, min(1.0, value))


@dataclass
class ScoredDocument:
    document: ReferenceDocument
    score: float


class SimilarityIndex(Protocol):
    def top_k(self, query_vector: Sequence[float], k: int) -> list[ScoredDocument]: ...


class LinearScanIndex:
    """Brute-force O(N*D) scan over every reference document on each query.

    Holds no state of its own; documents are re-read through ``load_documents``
    on every call. Suitable for a small, write-rarely corpus.
    """

    def __init__(self, load_documents: Callable[[], list[ReferenceDocument]]) -> None:
        self._load_documents = load_documents

    def top_k(self, query_vector: Sequence[float], k: int) -> list[ScoredDocument]:
        if k <= 0:
            return []
        scored = [
            ScoredDocument(document=doc, score=cosine_similarity(query_vector, doc.embedding))
            for doc in self._load_documents()
        ]
        # sorted() is stable, so equal scores keep scan order
        scored = sorted(scored, key=lambda item: item.score, reverse=True)
        return scored[:k]
