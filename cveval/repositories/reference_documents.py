from __future__ import annotations

import copy
import json
import sqlite3
import threading
from pathlib import Path

from cveval.models import ReferenceDocument


class InMemoryReferenceDocumentsRepository:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: list[ReferenceDocument] = []

    def create(self, *, document: ReferenceDocument) -> ReferenceDocument:
        with self._lock:
            self._documents.append(copy.deepcopy(document))
            return copy.deepcopy(document)

    def list_all(self) -> list[ReferenceDocument]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._documents]

    def reset(self) -> None:
        with self._lock:
            self._documents.clear()


class SqliteReferenceDocumentsRepository:
    def __init__(self, db_path: str | Path) -> None:
        self._lock = threading.RLock()
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reference_documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    document_id TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    requirements TEXT NOT NULL,
                    embedding TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def create(self, *, document: ReferenceDocument) -> ReferenceDocument:
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reference_documents(
                    document_id, title, description, requirements, embedding, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    document.document_id,
                    document.title,
                    document.description,
                    document.requirements,
                    json.dumps(list(document.embedding)),
                    document.created_at,
                ),
            )
            conn.commit()
        return document

    def list_all(self) -> list[ReferenceDocument]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT document_id, title, description, requirements, embedding, created_at
                FROM reference_documents
                ORDER BY seq ASC
                """
            ).fetchall()
        return [
            ReferenceDocument(
                document_id=row["document_id"],
                title=row["title"],
                description=row["description"],
                requirements=row["requirements"],
                embedding=[float(x) for x in json.loads(row["embedding"])],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def reset(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("DELETE FROM reference_documents")
            conn.commit()
