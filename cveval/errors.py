from __future__ import annotations


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status


def input_error(message: str, *, code: str = "INPUT_INVALID") -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
    )


class LLMRetryExhaustedError(Exception):
    """Raised when every attempt of an LLM call failed; chained from the last error."""

    def __init__(self, *, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class StageError(Exception):
    """A pipeline stage failed; the remaining stages are not run."""

    def __init__(self, *, stage: str, message: str) -> None:
        super().__init__(f"{stage} stage failed: {message}")
        self.stage = stage
        self.message = message


class StructuredResponseError(StageError):
    def __init__(self, *, stage: str, message: str, raw: str) -> None:
        super().__init__(stage=stage, message=message)
        self.raw = raw
