"""Retry and circuit breaking for remote embedding calls.

A hook that cannot reach the embedding service should fail quickly rather
than stall the agent, so consecutive transient failures open a circuit
that rejects calls until ``reset_timeout`` has passed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Exponential backoff settings."""

    max_retries: int = 3
    backoff_base: float = 0.5  # seconds
    backoff_max: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_status_codes: tuple[int, ...] = (408, 429, 500, 502, 503, 504)
    retryable_exceptions: tuple[type[Exception], ...] = (ConnectionError, TimeoutError)

    def delay(self, attempt: int) -> float:
        return min(self.backoff_base * self.backoff_multiplier**attempt, self.backoff_max)


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised instead of calling a service whose circuit is open."""


@dataclass
class CircuitBreaker:
    """Opens after ``failure_threshold`` consecutive transient failures."""

    failure_threshold: int = 5
    reset_timeout: float = 30.0

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False, repr=False)
    _failures: int = field(default=0, init=False, repr=False)
    _opened_at: float = field(default=0.0, init=False, repr=False)

    @property
    def state(self) -> CircuitState:
        if (
            self._state == CircuitState.OPEN
            and time.monotonic() - self._opened_at >= self.reset_timeout
        ):
            self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("Embedding service recovered, circuit closed")
        self._failures = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"Embedding circuit opened after {self._failures} failures,"
                    f" retrying in {self.reset_timeout}s"
                )
            self._state = CircuitState.OPEN
            self._opened_at = time.monotonic()

    def stats(self) -> dict[str, Any]:
        return {"state": self.state.value, "failures": self._failures}


def status_code_of(exc: Exception) -> int | None:
    """HTTP status carried by an SDK exception, if any."""
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None) if response is not None else None
    return int(status) if isinstance(status, int) else None


def is_retryable(exc: Exception, config: RetryConfig) -> bool:
    if isinstance(exc, config.retryable_exceptions):
        return True
    status = status_code_of(exc)
    return status is not None and status in config.retryable_status_codes


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    circuit: CircuitBreaker | None = None,
) -> T:
    """
    Await ``fn()`` until it succeeds, retrying transient failures.

    Raises:
        CircuitOpenError: The circuit is open
        Exception: The last failure, or the first permanent one
    """
    cfg = config or RetryConfig()

    attempt = 0
    while True:
        if circuit is not None and not circuit.allow_request():
            raise CircuitOpenError("Embedding service unavailable (circuit open)")

        try:
            result = await fn()
        except Exception as exc:
            transient = is_retryable(exc, cfg)
            if circuit is not None and transient:
                circuit.record_failure()
            if not transient or attempt >= cfg.max_retries:
                raise
            delay = cfg.delay(attempt)
            logger.warning(
                f"Embedding call failed (attempt {attempt + 1}/{cfg.max_retries + 1}),"
                f" retrying in {delay:.1f}s: {exc}"
            )
            await asyncio.sleep(delay)
            attempt += 1
            continue

        if circuit is not None:
            circuit.record_success()
        return result
