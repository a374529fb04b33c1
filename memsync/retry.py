"""
Timeout-bounded remote calls with exponential backoff.

Every remote operation is a callable taking the per-attempt timeout in
seconds. The executor retries transient failures (network errors, timeouts,
5xx, 429) and surfaces client errors and caller cancellations at once.
"""

import logging
import random
import threading
import time
from typing import Callable, TypeVar

import httpx

from .config import MAX_RETRY_DELAY_SEC, Settings
from .errors import (
    ORIGIN_CALLER,
    ORIGIN_NETWORK,
    ORIGIN_REMOTE,
    ORIGIN_TIMEOUT,
    CallCancelled,
    RemoteCallError,
)
from .scrub import scrub

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMITED = 429
MAX_JITTER_SEC = 1.0


def describe_failure(exc: BaseException) -> tuple[int | None, str]:
    """Return ``(status_code, origin)`` for a failed attempt."""
    if isinstance(exc, RemoteCallError):
        return exc.status_code, exc.origin
    if isinstance(exc, httpx.TimeoutException):
        return None, ORIGIN_TIMEOUT
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code, ORIGIN_REMOTE
    if isinstance(exc, httpx.TransportError):
        return None, ORIGIN_NETWORK
    status = getattr(exc, "status_code", None)
    return (status if isinstance(status, int) else None), ORIGIN_REMOTE


def is_retryable(exc: BaseException) -> bool:
    status, origin = describe_failure(exc)
    if origin == ORIGIN_CALLER:
        return False
    if status is not None and 400 <= status < 500 and status != RATE_LIMITED:
        return False
    return True


class CallExecutor:
    def __init__(
        self,
        attempts: int = 3,
        timeout_sec: float = 30.0,
        base_delay_sec: float = 1.0,
        max_delay_sec: float = MAX_RETRY_DELAY_SEC,
        jitter: Callable[[], float] = random.random,
        sleep: Callable[[float], None] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        self.attempts = max(1, attempts)
        self.timeout_sec = timeout_sec
        self.base_delay_sec = base_delay_sec
        self.max_delay_sec = max_delay_sec
        self._jitter = jitter
        self._sleep = sleep
        self._cancel_event = cancel_event

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "CallExecutor":
        return cls(
            attempts=settings.retry_attempts,
            timeout_sec=settings.api_timeout_sec,
            base_delay_sec=settings.retry_base_delay_sec,
            max_delay_sec=settings.retry_max_delay_sec,
            **kwargs,
        )

    def retry_delay(self, attempt: int) -> float:
        """Backoff before retrying after zero-based *attempt*, jitter included."""
        delay = self.base_delay_sec * (2 ** attempt) + self._jitter() * MAX_JITTER_SEC
        return min(delay, self.max_delay_sec)

    def execute(self, operation: Callable[[float], T], label: str) -> T:
        last_error: Exception | None = None
        for attempt in range(self.attempts):
            self._raise_if_cancelled(label)
            try:
                return operation(self.timeout_sec)
            except Exception as exc:
                last_error = exc
                if not is_retryable(exc):
                    raise
                if attempt >= self.attempts - 1:
                    break
                delay = self.retry_delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %dms...",
                    label,
                    attempt + 1,
                    self.attempts,
                    scrub(_failure_text(exc)),
                    round(delay * 1000),
                )
                self._wait(delay, label)
        raise last_error  # type: ignore[misc]

    def _wait(self, delay: float, label: str) -> None:
        if self._sleep is not None:
            self._sleep(delay)
            return
        if self._cancel_event is None:
            time.sleep(delay)
            return
        if self._cancel_event.wait(delay):
            raise CallCancelled(f"{label} cancelled during backoff")

    def _raise_if_cancelled(self, label: str) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise CallCancelled(f"{label} cancelled")


def _failure_text(exc: BaseException) -> str:
    status, origin = describe_failure(exc)
    text = str(exc) or exc.__class__.__name__
    if origin == ORIGIN_TIMEOUT and "timed out" not in text.lower():
        return f"timed out ({text})"
    if status is not None and str(status) not in text:
        return f"HTTP {status}: {text}"
    return text
