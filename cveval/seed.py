from __future__ import annotations

import logging
from typing import Any

from cveval.llm_provider import LLMClient, RetryPolicy
from cveval.models import ReferenceDocument
from cveval.retrieval import add_reference_document

logger = logging.getLogger(__name__)

DEFAULT_JOB_DESCRIPTION: dict[str, str] = {
    "title": "Product Engineer (Backend) - Rakamin",
    "description": (
        "Rakamin is hiring a Product Engineer (Backend) to work on Rakamin. We're looking for dedicated "
        "engineers who write code they're proud of and who are eager to keep scaling and improving complex "
        "systems, including those powered by AI.\n\n"
        "You'll be building new product features alongside a frontend engineer and product manager using our "
        "Agile methodology, as well as addressing issues to ensure our apps are robust and our codebase is "
        "clean. As a Product Engineer, you'll write clean, efficient code to enhance our product's codebase in "
        "meaningful ways.\n\n"
        "In addition to classic backend work, this role also touches on building AI-powered systems, where "
        "you'll design and orchestrate how large language models (LLMs) integrate into Rakamin's product "
        "ecosystem."
    ),
    "requirements": (
        "We're looking for candidates with a strong track record of working on backend technologies of web "
        "apps, ideally with exposure to AI/LLM development or a strong desire to learn.\n\n"
        "You should have experience with backend languages and frameworks (Node.js, Django, Rails), as well as "
        "modern backend tooling and technologies such as:\n\n"
        "- Database management (MySQL, PostgreSQL, MongoDB)\n"
        "- RESTful APIs\n"
        "- Security compliance\n"
        "- Cloud technologies (AWS, Google Cloud, Azure)\n"
        "- Server-side languages (Java, Python, Ruby, or JavaScript)\n"
        "- Understanding of frontend technologies\n"
        "- User authentication and authorization between multiple systems, servers, and environments\n"
        "- Scalable application design principles\n"
        "- Creating database schemas that represent and support business processes\n"
        "- Implementing automated testing platforms and unit tests\n"
        "- Familiarity with LLM APIs, embeddings, vector databases and prompt design best practices"
    ),
}

SAMPLE_JOB_DESCRIPTIONS: list[dict[str, str]] = [
    {
        "title": "Senior Backend Developer - Tech Company",
        "description": (
            "We are looking for a senior backend developer to join our team. You will be responsible for "
            "designing and implementing scalable backend systems."
        ),
        "requirements": (
            "5+ years of experience with Node.js, Python, or Java. Experience with microservices, Docker, "
            "and cloud platforms."
        ),
    },
    {
        "title": "AI Engineer - Startup",
        "description": (
            "Join our AI team to build cutting-edge AI solutions. You will work on machine learning models "
            "and AI-powered features."
        ),
        "requirements": (
            "Experience with Python, TensorFlow/PyTorch, and cloud AI services. Knowledge of NLP and "
            "computer vision."
        ),
    },
    {
        "title": "Full Stack Developer - E-commerce",
        "description": (
            "We need a full stack developer to work on our e-commerce platform. You will handle both "
            "frontend and backend development."
        ),
        "requirements": (
            "Experience with React, Node.js, and databases. Knowledge of payment systems and e-commerce "
            "best practices."
        ),
    },
]


def seed_reference_documents(
    *,
    store: Any,
    llm: LLMClient,
    include_samples: bool = False,
    retry: RetryPolicy | None = None,
) -> list[ReferenceDocument]:
    """Insert the default job description when the corpus is empty; returns what was created."""
    if store.list_reference_documents():
        logger.info("reference documents already present, skipping seed")
        return []
    entries = [DEFAULT_JOB_DESCRIPTION]
    if include_samples:
        entries.extend(SAMPLE_JOB_DESCRIPTIONS)
    created = [add_reference_document(store=store, llm=llm, retry=retry, **entry) for entry in entries]
    logger.info("reference_documents_seeded count=%d", len(created))
    return created
