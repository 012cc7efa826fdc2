import pathlib
import sys

import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cveval.llm_provider import RetryPolicy
from cveval.main import create_app, queue_backend
from cveval.store import store


class ScriptedLLM:
    """LLMClient double: replays queued responses per method and records every call.

    A queued Exception instance is raised instead of returned.
    """

    def __init__(
        self,
        *,
        embeddings: list | None = None,
        structured: list | None = None,
        completions: list | None = None,
        default_embedding: list[float] | None = None,
    ):
        self.embeddings = list(embeddings or [])
        self.structured = list(structured or [])
        self.completions = list(completions or [])
        self.default_embedding = default_embedding
        self.calls: list[tuple[str, str]] = []

    @staticmethod
    def _next(queue: list, name: str):
        if not queue:
            raise AssertionError(f"unexpected {name} call")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def generate_embedding(self, text: str) -> list[float]:
        self.calls.append(("embedding", text))
        if not self.embeddings and self.default_embedding is not None:
            return list(self.default_embedding)
        return self._next(self.embeddings, "generate_embedding")

    def generate_structured_completion(self, prompt: str, temperature: float = 0.3) -> str:
        self.calls.append(("structured", prompt))
        return self._next(self.structured, "generate_structured_completion")

    def generate_completion(self, prompt: str, temperature: float = 0.3) -> str:
        self.calls.append(("completion", prompt))
        return self._next(self.completions, "generate_completion")


@pytest.fixture(autouse=True)
def reset_store(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WORKER_EMBEDDED", "false")
    monkeypatch.setenv("MOCK_LLM_ENABLED", "true")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    store.reset()
    if hasattr(queue_backend, "reset"):
        queue_backend.reset()
    yield


@pytest.fixture
def no_sleep_retry() -> RetryPolicy:
    sleeps: list[float] = []
    policy = RetryPolicy(attempts=3, backoff_unit_s=1.0, sleep=sleeps.append)
    policy.sleeps = sleeps  # type: ignore[attr-defined]
    return policy


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())
