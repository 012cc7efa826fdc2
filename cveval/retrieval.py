from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from cveval.errors import input_error
from cveval.llm_provider import LLMClient, RetryPolicy
from cveval.models import ReferenceDocument, reference_embedding_text
from cveval.similarity import LinearScanIndex, SimilarityIndex

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 2
CONTEXT_HEADER = "Relevant Job Descriptions:\n\n"


def render_context(documents: list[ReferenceDocument]) -> str:
    parts = [CONTEXT_HEADER]
    for doc in documents:
        parts.append(f"Title: {doc.title}\nDescription: {doc.description}\nRequirements: {doc.requirements}\n\n")
    return "".join(parts)


class ContextRetriever:
    """Embeds CV and project text and collects the closest reference documents."""

    def __init__(
        self,
        *,
        llm: LLMClient,
        index: SimilarityIndex,
        top_k: int = DEFAULT_TOP_K,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.llm = llm
        self.index = index
        self.top_k = max(1, int(top_k))
        self.retry = retry or RetryPolicy()

    def _search(self, text: str, *, label: str) -> list[ReferenceDocument]:
        vector = self.retry.call(lambda: self.llm.generate_embedding(text), description=f"embed_{label}")
        return [hit.document for hit in self.index.top_k(vector, self.top_k)]

    def retrieve_documents(self, cv_text: str, project_text: str) -> list[ReferenceDocument]:
        if not cv_text or not cv_text.strip():
            raise input_error("cv text is required")
        if not project_text or not project_text.strip():
            raise input_error("project text is required")

        cv_hits = self._search(cv_text, label="cv")
        project_hits = self._search(project_text, label="project")

        seen: set[str] = set()
        merged: list[ReferenceDocument] = []
        for doc in cv_hits + project_hits:
            if doc.document_id in seen:
                continue
            seen.add(doc.document_id)
            merged.append(doc)
        logger.debug(
            "context_retrieved cv_hits=%d project_hits=%d merged=%d",
            len(cv_hits),
            len(project_hits),
            len(merged),
        )
        return merged

    def get_relevant_context(self, cv_text: str, project_text: str) -> str:
        return render_context(self.retrieve_documents(cv_text, project_text))


def add_reference_document(
    *,
    store: Any,
    llm: LLMClient,
    title: str,
    description: str,
    requirements: str,
    retry: RetryPolicy | None = None,
) -> ReferenceDocument:
    for name, value in (("title", title), ("description", description), ("requirements", requirements)):
        if not value or not value.strip():
            raise input_error(f"{name} is required")
    text = reference_embedding_text(title=title, description=description, requirements=requirements)
    policy = retry or RetryPolicy()
    embedding = policy.call(lambda: llm.generate_embedding(text), description="embed_reference")
    document = store.create_reference_document(
        title=title,
        description=description,
        requirements=requirements,
        embedding=embedding,
    )
    logger.info("reference_document_added document_id=%s title=%s", document.document_id, title)
    return document


def create_context_retriever(
    *,
    store: Any,
    llm: LLMClient,
    retry: RetryPolicy | None = None,
    environ: Mapping[str, str] | None = None,
) -> ContextRetriever:
    env = os.environ if environ is None else environ
    try:
        top_k = int(env.get("RAG_TOP_K", str(DEFAULT_TOP_K)))
    except ValueError:
        top_k = DEFAULT_TOP_K
    return ContextRetriever(
        llm=llm,
        index=LinearScanIndex(store.list_reference_documents),
        top_k=top_k,
        retry=retry,
    )
