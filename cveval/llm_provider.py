"""
LLM service client used by the retrieval and evaluation stages.

Architecture:
  - ProviderConfig: per-provider settings (model, api_key, base_url, etc.)
  - Degradation chain for completions: primary model -> fallback model
  - call_with_retry: bounded attempts with quadratic backoff around any call
  - MockLLMClient (cveval.mock_llm) when no real provider is configured

Configuration via environment variables:
  LLM_PROVIDER          = openai | ollama | custom   (default: openai)
  LLM_MODEL             = gpt-4o-mini                (primary model)
  LLM_FALLBACK_MODEL    = gpt-3.5-turbo              (fallback on primary failure)
  LLM_EMBEDDING_MODEL   = text-embedding-3-small
  OPENAI_API_KEY        = sk-...
  OPENAI_BASE_URL       = https://api.openai.com/v1  (or custom endpoint)
  OLLAMA_BASE_URL       = http://localhost:11434/v1   (Ollama OpenAI-compat endpoint)
  OLLAMA_MODEL          = qwen2.5:7b
  MOCK_LLM_ENABLED      = true                       (force mock mode)
"""

from __future__ import annotations

import logging
import os
import time
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

from cveval.errors import ApiError, LLMRetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMBEDDING_MAX_CHARS = 8000
EMBEDDING_MIN_CHARS = 3
COMPLETION_MAX_TOKENS = 2000
USAGE_LOG_MAX_ENTRIES = 1000

_STRUCTURED_SUFFIX = (
    "\n\nIMPORTANT: Respond with ONLY valid JSON. Do not include any additional text, "
    "explanations, or formatting outside the JSON object."
)


class LLMClient(Protocol):
    def generate_embedding(self, text: str) -> list[float]: ...

    def generate_completion(self, prompt: str, temperature: float = 0.3) -> str: ...

    def generate_structured_completion(self, prompt: str, temperature: float = 0.3) -> str: ...


@dataclass
class ProviderConfig:
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    fallback_model: str = ""
    embedding_model: str = "text-embedding-3-small"
    api_key: str = ""
    base_url: str = ""
    max_tokens: int = COMPLETION_MAX_TOKENS


@dataclass
class LLMUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    model: str = ""
    latency_ms: float = 0.0
    degraded: bool = False
    degrade_reason: str = ""


# most recent calls only
_call_usage_log: deque[LLMUsage] = deque(maxlen=USAGE_LOG_MAX_ENTRIES)


def get_usage_log() -> list[LLMUsage]:
    return list(_call_usage_log)


def reset_usage_log() -> None:
    _call_usage_log.clear()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_provider_config(environ: Mapping[str, str] | None = None) -> ProviderConfig:
    env = os.environ if environ is None else environ
    provider = env.get("LLM_PROVIDER", "openai").strip().lower()
    fallback = env.get("LLM_FALLBACK_MODEL", "").strip()
    embedding_model = env.get("LLM_EMBEDDING_MODEL", "").strip() or "text-embedding-3-small"

    if provider == "ollama":
        return ProviderConfig(
            provider="ollama",
            model=env.get("OLLAMA_MODEL", env.get("LLM_MODEL", "")).strip() or "qwen2.5:7b",
            fallback_model=fallback,
            embedding_model=embedding_model,
            api_key=env.get("OPENAI_API_KEY", "ollama").strip() or "ollama",
            base_url=env.get("OLLAMA_BASE_URL", "http://localhost:11434/v1").strip(),
        )

    return ProviderConfig(
        provider=provider,
        model=env.get("LLM_MODEL", "").strip() or "gpt-4o-mini",
        fallback_model=fallback,
        embedding_model=embedding_model,
        api_key=env.get("OPENAI_API_KEY", "").strip(),
        base_url=env.get("OPENAI_BASE_URL", "").strip(),
    )


def is_real_llm_available(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    if _as_bool(env.get("MOCK_LLM_ENABLED", "false")):
        return False
    config = _get_provider_config(env)
    if config.provider == "ollama":
        return bool(config.base_url)
    return bool(config.api_key)


def _create_client(config: ProviderConfig):
    try:
        import openai
    except ImportError:
        raise RuntimeError("openai package is required. Install with: pip install openai")

    kwargs: dict[str, Any] = {}
    if config.api_key:
        kwargs["api_key"] = config.api_key
    if config.base_url:
        kwargs["base_url"] = config.base_url

    if config.provider == "ollama" and "api_key" not in kwargs:
        kwargs["api_key"] = "ollama"

    return openai.OpenAI(**kwargs)


def _input_invalid(message: str) -> ApiError:
    return ApiError(
        code="LLM_INPUT_INVALID",
        message=message,
        error_class="validation",
        retryable=False,
        http_status=422,
    )


def prepare_embedding_input(text: str | None) -> str:
    """Validate and truncate text before it is sent to the embedding endpoint."""
    if not text:
        raise _input_invalid("input text cannot be empty")
    text = text[:EMBEDDING_MAX_CHARS].strip()
    if len(text) < EMBEDDING_MIN_CHARS:
        raise _input_invalid("input text is invalid")
    if "\x00" in text:
        raise _input_invalid("input text contains null bytes")
    return text


def _call_chat(
    *,
    client,
    model: str,
    messages: list[dict[str, str]],
    temperature: float = 0.3,
    max_tokens: int = COMPLETION_MAX_TOKENS,
    json_mode: bool = False,
) -> tuple[str, LLMUsage]:
    """Call chat completions and return (content, usage)."""
    t0 = time.monotonic()
    kwargs: dict[str, Any] = {
        "model": model,
        "temperature": temperature,
        "messages": messages,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    response = client.chat.completions.create(**kwargs)
    elapsed_ms = (time.monotonic() - t0) * 1000

    if not response.choices:
        raise RuntimeError("no completion choices returned")
    content = response.choices[0].message.content or ""
    usage_data = response.usage
    usage = LLMUsage(
        prompt_tokens=getattr(usage_data, "prompt_tokens", 0) if usage_data else 0,
        completion_tokens=getattr(usage_data, "completion_tokens", 0) if usage_data else 0,
        total_tokens=getattr(usage_data, "total_tokens", 0) if usage_data else 0,
        model=model,
        latency_ms=round(elapsed_ms, 1),
    )
    _call_usage_log.append(usage)
    return content, usage


def _call_with_degradation(
    *,
    client,
    config: ProviderConfig,
    messages: list[dict[str, str]],
    temperature: float,
    json_mode: bool = False,
) -> tuple[str, LLMUsage]:
    """Try primary model, then fallback model, raising on total failure."""
    try:
        return _call_chat(
            client=client,
            model=config.model,
            messages=messages,
            temperature=temperature,
            max_tokens=config.max_tokens,
            json_mode=json_mode,
        )
    except Exception as primary_exc:
        if not config.fallback_model:
            raise

        logger.warning(
            "Primary model %s failed (%s), degrading to %s",
            config.model,
            type(primary_exc).__name__,
            config.fallback_model,
        )
        content, usage = _call_chat(
            client=client,
            model=config.fallback_model,
            messages=messages,
            temperature=temperature,
            max_tokens=config.max_tokens,
            json_mode=json_mode,
        )
        usage.degraded = True
        usage.degrade_reason = f"primary_failed:{type(primary_exc).__name__}"
        return content, usage


class OpenAILLMClient:
    """OpenAI (or OpenAI-compatible) implementation of the LLMClient protocol."""

    def __init__(self, config: ProviderConfig | None = None, *, client: Any = None) -> None:
        self.config = config or _get_provider_config()
        self._client = client if client is not None else _create_client(self.config)

    def generate_embedding(self, text: str) -> list[float]:
        text = prepare_embedding_input(text)
        response = self._client.embeddings.create(model=self.config.embedding_model, input=[text])
        if not response.data:
            raise RuntimeError("no embeddings returned")
        return [float(x) for x in response.data[0].embedding]

    def generate_completion(self, prompt: str, temperature: float = 0.3) -> str:
        content, _ = _call_with_degradation(
            client=self._client,
            config=self.config,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
        )
        return content

    def generate_structured_completion(self, prompt: str, temperature: float = 0.3) -> str:
        content, _ = _call_with_degradation(
            client=self._client,
            config=self.config,
            messages=[{"role": "user", "content": prompt + _STRUCTURED_SUFFIX}],
            temperature=temperature,
            json_mode=True,
        )
        return content


def call_with_retry(
    fn: Callable[[], T],
    *,
    attempts: int,
    backoff_unit_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "llm_call",
) -> T:
    """Run ``fn`` up to ``attempts`` times; before attempt i+1 sleep i**2 backoff units.

    Non-retryable ApiErrors propagate immediately. When every attempt fails the
    last error is surfaced through LLMRetryExhaustedError.
    """
    attempts = max(1, int(attempts))
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        if attempt > 1:
            sleep(((attempt - 1) ** 2) * backoff_unit_s)
        try:
            return fn()
        except ApiError as exc:
            if not exc.retryable:
                raise
            last_error = exc
        except Exception as exc:
            last_error = exc
        logger.warning(
            "llm_call_failed call=%s attempt=%d/%d error=%s",
            description,
            attempt,
            attempts,
            last_error,
        )
    assert last_error is not None
    raise LLMRetryExhaustedError(attempts=attempts, last_error=last_error) from last_error


@dataclass
class RetryPolicy:
    attempts: int = 3
    backoff_unit_s: float = 1.0
    sleep: Callable[[float], None] = time.sleep

    def call(self, fn: Callable[[], T], *, description: str = "llm_call") -> T:
        return call_with_retry(
            fn,
            attempts=self.attempts,
            backoff_unit_s=self.backoff_unit_s,
            sleep=self.sleep,
            description=description,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RetryPolicy:
        env = os.environ if environ is None else environ
        try:
            attempts = int(env.get("LLM_MAX_ATTEMPTS", "3"))
        except ValueError:
            attempts = 3
        try:
            backoff_unit_s = float(env.get("LLM_BACKOFF_UNIT_S", "1.0"))
        except ValueError:
            backoff_unit_s = 1.0
        return cls(attempts=max(1, attempts), backoff_unit_s=max(0.0, backoff_unit_s))


def create_llm_client_from_env(environ: Mapping[str, str] | None = None) -> LLMClient:
    env = os.environ if environ is None else environ
    if is_real_llm_available(env):
        return OpenAILLMClient(_get_provider_config(env))
    from cveval.mock_llm import MockLLMClient

    logger.info("No LLM provider configured, using deterministic mock client")
    return MockLLMClient()


def get_provider_info(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Return current provider configuration (safe for logging, no secrets)."""
    config = _get_provider_config(environ)
    return {
        "provider": config.provider,
        "model": config.model,
        "fallback_model": config.fallback_model or None,
        "embedding_model": config.embedding_model,
        "base_url": config.base_url or "(default)",
        "has_api_key": bool(config.api_key),
        "real_llm_available": is_real_llm_available(environ),
    }
