from cveval.repositories.jobs import InMemoryJobsRepository, SqliteJobsRepository
from cveval.repositories.reference_documents import (
    InMemoryReferenceDocumentsRepository,
    SqliteReferenceDocumentsRepository,
)

__all__ = [
    "InMemoryJobsRepository",
    "SqliteJobsRepository",
    "InMemoryReferenceDocumentsRepository",
    "SqliteReferenceDocumentsRepository",
]
