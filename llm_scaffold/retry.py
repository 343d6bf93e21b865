"""Retry/backoff state machine for the LLM client.

The machine only does bookkeeping: it decides whether another attempt is
allowed and how long to wait before it, but it never sleeps or performs I/O.
That keeps cancellation and deadline behaviour testable without real
network timing::

    Idle -> Attempting -> BackingOff -> Attempting -> ... -> Succeeded
                     \\                                  \\-> FatalFailure
                      \\-> FatalFailure
"""

from __future__ import annotations

import random
import time
from enum import Enum
from typing import Callable, Optional

from .config import RetryConfig


class RetryState(str, Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    FATAL_FAILURE = "fatal_failure"


class FailureReason(str, Enum):
    NON_RETRYABLE = "non_retryable"
    ATTEMPTS_EXHAUSTED = "attempts_exhausted"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    CANCELLED = "cancelled"


_TERMINAL = (RetryState.SUCCEEDED, RetryState.FATAL_FAILURE)


class RetryMachine:
    """Tracks attempts, elapsed time and the next backoff delay.

    Args:
        config: Attempt limit, backoff curve, jitter and overall deadline.
        clock: Monotonic clock in seconds (injectable for tests).
        rng: Source of uniform ``[0, 1)`` floats used for jitter.
    """

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or RetryConfig()
        self._clock = clock
        self._rng = rng
        self._state = RetryState.IDLE
        self._attempt = 0
        self._started_at: Optional[float] = None
        self._failure_reason: Optional[FailureReason] = None

    # -- Read-only views ---------------------------------------------------

    @property
    def state(self) -> RetryState:
        return self._state

    @property
    def attempt(self) -> int:
        """Number of attempts started so far."""
        return self._attempt

    @property
    def failure_reason(self) -> Optional[FailureReason]:
        return self._failure_reason

    @property
    def is_terminal(self) -> bool:
        return self._state in _TERMINAL

    @property
    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    @property
    def remaining(self) -> Optional[float]:
        """Seconds left before the overall deadline, or ``None`` without one."""
        if self.config.overall_deadline is None:
            return None
        return self.config.overall_deadline - self.elapsed

    @property
    def deadline_exceeded(self) -> bool:
        remaining = self.remaining
        return remaining is not None and remaining <= 0

    # -- Transitions -------------------------------------------------------

    def start_attempt(self) -> int:
        """Enter ``Attempting`` and return the 1-based attempt number."""
        self._require(RetryState.IDLE, RetryState.BACKING_OFF)
        if self._started_at is None:
            self._started_at = self._clock()
        self._attempt += 1
        self._state = RetryState.ATTEMPTING
        return self._attempt

    def succeed(self) -> None:
        self._require(RetryState.ATTEMPTING)
        self._state = RetryState.SUCCEEDED

    def fail(self, retryable: bool, retry_after: Optional[float] = None) -> Optional[float]:
        """Record a failed attempt.

        Returns:
            The delay to wait before the next attempt (state ``BackingOff``),
            or ``None`` when no further attempt is allowed (state
            ``FatalFailure``; see ``failure_reason``).
        """
        self._require(RetryState.ATTEMPTING)
        if not retryable:
            return self._die(FailureReason.NON_RETRYABLE)
        if self._attempt >= self.config.max_attempts:
            return self._die(FailureReason.ATTEMPTS_EXHAUSTED)

        delay = self.next_delay(retry_after)
        remaining = self.remaining
        if remaining is not None and delay >= remaining:
            return self._die(FailureReason.DEADLINE_EXCEEDED)

        self._state = RetryState.BACKING_OFF
        return delay

    def cancel(self) -> None:
        """Stop retrying. A no-op once the machine is terminal."""
        if not self.is_terminal:
            self._die(FailureReason.CANCELLED)

    def expire(self) -> None:
        """Mark the overall deadline as exceeded."""
        if not self.is_terminal:
            self._die(FailureReason.DEADLINE_EXCEEDED)

    # -- Backoff curve -----------------------------------------------------

    def next_delay(self, retry_after: Optional[float] = None) -> float:
        """Exponential delay for the current attempt, plus jitter.

        A server-provided ``Retry-After`` raises the delay to at least that
        value, capped at ``max_delay``.
        """
        cfg = self.config
        exponent = max(self._attempt - 1, 0)
        delay = min(cfg.initial_delay * (cfg.multiplier ** exponent), cfg.max_delay)
        if cfg.jitter > 0:
            delay += delay * cfg.jitter * self._rng()
        if retry_after is not None and retry_after > 0:
            delay = max(delay, min(retry_after, cfg.max_delay))
        return delay

    # -- Internal helpers --------------------------------------------------

    def _die(self, reason: FailureReason) -> None:
        self._state = RetryState.FATAL_FAILURE
        self._failure_reason = reason
        return None

    def _require(self, *allowed: RetryState) -> None:
        if self._state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise RuntimeError(
                f"Illegal retry transition from {self._state.value!r} (expected one of: {names})"
            )
