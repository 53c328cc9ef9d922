import logging
import time
from collections.abc import Callable
from typing import TypeVar

import openai

from app.core.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}

ERROR_CODES = {
    "upload": {"timeout": "STT_TIMEOUT", "failed": "STT_UPLOAD_FAILED"},
    "workflow": {"timeout": "WORKFLOW_TIMEOUT", "failed": "WORKFLOW_FAILED"},
}


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, openai.APIConnectionError):
        return True
    if isinstance(exc, openai.APIStatusError):
        return exc.status_code in RETRYABLE_STATUSES
    return False


def categorize_error(exc: Exception, operation: str = "workflow") -> str:
    codes = ERROR_CODES[operation]
    if isinstance(exc, openai.APITimeoutError):
        return codes["timeout"]
    if isinstance(exc, openai.APIConnectionError):
        return "NETWORK_ERROR"
    return codes["failed"]


def backoff_delay(attempt: int, base_delay_ms: int | None = None) -> float:
    """Seconds to wait after the given 1-based attempt."""
    if base_delay_ms is None:
        base_delay_ms = get_settings().external_retry_delay_ms
    return (2 ** (attempt - 1)) * base_delay_ms / 1000


def call_with_retry(fn: Callable[[], T], *, job_id: str, operation: str, label: str) -> T:
    """Run an external call, retrying transient failures with exponential backoff.

    The last error is re-raised as-is so the caller can map it onto its own
    error type with ``categorize_error``.
    """
    max_retries = max(get_settings().external_max_retries, 1)
    for attempt in range(1, max_retries + 1):
        try:
            return fn()
        except openai.OpenAIError as exc:
            logger.warning(
                "external_call_attempt_failed",
                extra={
                    "job_id": job_id,
                    "label": label,
                    "attempt": attempt,
                    "max_retries": max_retries,
                    "error_code": categorize_error(exc, operation),
                    "error": str(exc),
                },
            )
            if attempt >= max_retries or not is_retryable(exc):
                raise
            time.sleep(backoff_delay(attempt))
    raise RuntimeError("unreachable")
