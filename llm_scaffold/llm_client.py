"""Async client for an OpenAI-compatible chat-completion endpoint.

Sends a composed ``LlmQuery`` and returns an ``LlmResponse`` whose status
classifies the outcome. Transient failures (timeouts, connection problems,
rate limiting, 5xx) are retried with exponential backoff and jitter, driven
by ``RetryMachine``; rejected credentials and malformed requests fail fast.

Typical usage::

    client = LlmClient(config.llm, config.retry)
    resp = await client.send(query, valid_key)
    if resp.ok:
        print(resp.text)
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from .config import LlmConfig, RetryConfig
from .credentials import ValidKey
from .models import LlmQuery, LlmResponse, ResponseStatus
from .retry import FailureReason, RetryMachine
from .utils import format_duration, print_warning

T = TypeVar("T")

_COMPLETIONS_PATH = "/chat/completions"


@dataclass
class _AttemptOutcome:
    """Classified result of one HTTP exchange."""

    status: ResponseStatus
    retryable: bool = False
    text: str = ""
    model: str = ""
    http_status: Optional[int] = None
    error: Optional[str] = None
    retry_after: Optional[float] = None


class LlmClient:
    """Chat-completion client with timeout, retry and cancellation handling.

    Args:
        config: Endpoint, model and per-attempt timeout.
        retry: Backoff policy and overall deadline.
        transport: Optional ``httpx`` transport (tests pass ``MockTransport``).
        sleep: Coroutine used for backoff waits.
        clock: Monotonic clock used for the overall deadline.
        rng: Jitter source.
    """

    def __init__(
        self,
        config: Optional[LlmConfig] = None,
        retry: Optional[RetryConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.config = config or LlmConfig()
        self.retry = retry or RetryConfig()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Return a fresh ``AsyncClient`` bound to the configured base URL."""
        return httpx.AsyncClient(
            base_url=self.config.base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
            transport=self._transport,
        )

    def _build_payload(self, query: LlmQuery) -> dict[str, Any]:
        return {
            "model": self.config.model,
            "messages": query.as_payload(),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

    @staticmethod
    def _extract_text(data: Any) -> str:
        """Pull the generated text out of a chat-completion JSON body."""
        if not isinstance(data, dict):
            return ""
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""

    @staticmethod
    def _parse_retry_after(response: httpx.Response) -> Optional[float]:
        """Seconds from a ``Retry-After`` header; HTTP dates are ignored."""
        raw = response.headers.get("retry-after")
        if raw is None:
            return None
        try:
            return max(float(raw), 0.0)
        except ValueError:
            return None

    @staticmethod
    def _is_quota_exhausted(response: httpx.Response) -> bool:
        """``True`` for 429s caused by an exhausted billing quota.

        Those are not transient, so retrying them only burns the deadline.
        """
        try:
            data = response.json()
        except ValueError:
            return False
        error = data.get("error") if isinstance(data, dict) else None
        if not isinstance(error, dict):
            return False
        return "insufficient_quota" in (error.get("code"), error.get("type"))

    def _classify(self, response: httpx.Response) -> _AttemptOutcome:
        code = response.status_code
        if response.is_success:
            try:
                data = response.json()
            except ValueError:
                return _AttemptOutcome(
                    status=ResponseStatus.TRANSPORT_ERROR,
                    http_status=code,
                    error="Endpoint returned a non-JSON body",
                )
            text = self._extract_text(data)
            if not text:
                return _AttemptOutcome(
                    status=ResponseStatus.TRANSPORT_ERROR,
                    http_status=code,
                    error="Endpoint response contained no message content",
                )
            return _AttemptOutcome(
                status=ResponseStatus.SUCCESS,
                text=text,
                model=str(data.get("model", self.config.model)),
                http_status=code,
            )

        detail = f"HTTP {code}: {response.text[:500]}"
        if code in (401, 403):
            return _AttemptOutcome(
                status=ResponseStatus.INVALID_CREDENTIAL, http_status=code, error=detail
            )
        if code == 429:
            return _AttemptOutcome(
                status=ResponseStatus.RATE_LIMITED,
                retryable=not self._is_quota_exhausted(response),
                http_status=code,
                error=detail,
                retry_after=self._parse_retry_after(response),
            )
        if code == 408 or code >= 500:
            return _AttemptOutcome(
                status=ResponseStatus.TRANSPORT_ERROR,
                retryable=True,
                http_status=code,
                error=detail,
                retry_after=self._parse_retry_after(response),
            )
        return _AttemptOutcome(status=ResponseStatus.TRANSPORT_ERROR, http_status=code, error=detail)

    async def _attempt(
        self, payload: dict[str, Any], headers: dict[str, str], timeout: float
    ) -> _AttemptOutcome:
        """Send one request and classify the outcome. Never raises httpx errors."""
        try:
            async with self._client(timeout) as client:
                response = await client.post(_COMPLETIONS_PATH, json=payload, headers=headers)
        except httpx.TimeoutException:
            return _AttemptOutcome(
                status=ResponseStatus.TIMEOUT,
                retryable=True,
                error=f"Request timed out after {timeout:.1f}s",
            )
        except httpx.TransportError as exc:
            return _AttemptOutcome(
                status=ResponseStatus.TRANSPORT_ERROR,
                retryable=True,
                error=f"Cannot reach {self.config.base_url}: {exc}",
            )
        return self._classify(response)

    @staticmethod
    async def _race(coro: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> tuple[bool, Optional[T]]:
        """Await *coro* unless *cancel_event* fires first.

        Returns ``(cancelled, result)``.
        """
        if cancel_event is None:
            return False, await coro

        work = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(work, waiter, return_exceptions=True)

        if work.done() and not work.cancelled() and not cancel_event.is_set():
            return False, work.result()
        return True, None

    def _response(
        self,
        machine: RetryMachine,
        outcome: _AttemptOutcome,
        *,
        status: Optional[ResponseStatus] = None,
        error: Optional[str] = None,
    ) -> LlmResponse:
        return LlmResponse(
            status=status or outcome.status,
            text=outcome.text,
            attempts=machine.attempt,
            retryable=outcome.retryable,
            http_status=outcome.http_status,
            error=error if error is not None else outcome.error,
            model=outcome.model,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(
        self,
        query: LlmQuery,
        credential: ValidKey,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LlmResponse:
        """Send *query* and return the classified response.

        Every retry reuses the identical request body. Once *cancel_event* is
        set no further attempt starts and the in-flight request is abandoned.
        """
        machine = RetryMachine(self.retry, clock=self._clock, rng=self._rng)
        payload = self._build_payload(query)
        headers = {
            "Authorization": f"Bearer {credential.reveal()}",
            "Content-Type": "application/json",
        }
        last = _AttemptOutcome(status=ResponseStatus.TIMEOUT)

        while True:
            if cancel_event is not None and cancel_event.is_set():
                machine.cancel()
                return self._response(
                    machine, last, status=ResponseStatus.CANCELLED, error="Cancelled before the next attempt"
                )

            remaining = machine.remaining
            if remaining is not None and remaining <= 0:
                machine.expire()
                return self._deadline_response(machine, last)

            attempt = machine.start_attempt()
            timeout = self.config.request_timeout
            if remaining is not None:
                timeout = min(timeout, remaining)

            cancelled, outcome = await self._race(
                self._attempt(payload, headers, timeout), cancel_event
            )
            if cancelled or outcome is None:
                machine.cancel()
                return self._response(
                    machine, last, status=ResponseStatus.CANCELLED, error="Cancelled during the request"
                )
            last = outcome

            if outcome.status is ResponseStatus.SUCCESS:
                machine.succeed()
                return self._response(machine, outcome)

            delay = machine.fail(outcome.retryable, outcome.retry_after)
            if delay is None:
                if machine.failure_reason is FailureReason.DEADLINE_EXCEEDED:
                    return self._deadline_response(machine, outcome)
                return self._response(machine, outcome)

            print_warning(
                f"Attempt {attempt}/{self.retry.max_attempts} failed "
                f"({outcome.status.value}: {outcome.error}); retrying in {format_duration(delay)}"
            )
            cancelled, _ = await self._race(self._sleep(delay), cancel_event)
            if cancelled:
                machine.cancel()
                return self._response(
                    machine, outcome, status=ResponseStatus.CANCELLED, error="Cancelled while backing off"
                )

    def _deadline_response(self, machine: RetryMachine, outcome: _AttemptOutcome) -> LlmResponse:
        deadline = self.retry.overall_deadline or 0.0
        message = f"Overall deadline of {format_duration(deadline)} exceeded after {machine.attempt} attempt(s)"
        if outcome.error:
            message = f"{message}; last error: {outcome.error}"
        return self._response(machine, outcome, status=ResponseStatus.TIMEOUT, error=message)
