"""Retry/backoff engine: bounded retries raced against cancellation.

The control flow is an explicit state machine.  :func:`transition` is pure and
decides the next state from the current one and the outcome of the last step;
:class:`RetryEngine` only performs the side effects (running attempts,
sleeping backoff slices, polling the cancellation listener).

States::

    ATTEMPTING ──success──────────────▶ SUCCESS
        │  ──cancelled────────────────▶ CANCELLED
        │  ──failure, attempt == max──▶ EXHAUSTED
        │  ──stream interrupted───────▶ EXHAUSTED
        └──failure, attempt < max────▶ BACKOFF ──elapsed──▶ ATTEMPTING (attempt+1)
                                           └────cancelled──▶ CANCELLED
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TypeVar

from discussion_gateway.domain.entities import (
    AttemptOutcome,
    GenerationAttempt,
    RetryResult,
)
from discussion_gateway.domain.exceptions import (
    ExhaustedRetriesError,
    GatewayError,
    GenerationCancelledError,
    GenerationTimeoutError,
    MalformedResponseError,
    StreamInterruptedError,
    TransportError,
)
from discussion_gateway.services.cancellation import (
    CancellationBroadcaster,
    CancellationListener,
    ListenerStatus,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


# ── Policy ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt ceiling and backoff timing.

    Attributes:
        max_retries:   Total attempts including the first one.
        base_delay_ms: Wait before the second attempt; doubles afterwards.
        poll_slice_ms: Longest sleep between two cancellation polls.
    """

    max_retries: int = 3
    base_delay_ms: int = 300
    poll_slice_ms: int = 25

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.base_delay_ms <= 0 or self.poll_slice_ms <= 0:
            raise ValueError("Backoff timings must be positive")


def backoff_delay_ms(attempt: int, base_delay_ms: int) -> int:
    """Delay after the failed *attempt* (1-indexed): ``base × 2^(attempt-1)``."""
    return base_delay_ms * 2 ** (attempt - 1)


# ── State machine ───────────────────────────────────────────────────────────


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCESS = "success"
    CANCELLED = "cancelled"
    EXHAUSTED = "exhausted"


_TERMINAL = frozenset({RetryState.SUCCESS, RetryState.CANCELLED, RetryState.EXHAUSTED})

_RETRYABLE = frozenset({AttemptOutcome.TRANSPORT_ERROR, AttemptOutcome.MALFORMED_RESPONSE})


@dataclass(frozen=True, slots=True)
class RetryProgress:
    state: RetryState = RetryState.ATTEMPTING
    attempt: int = 1

    @property
    def terminal(self) -> bool:
        return self.state in _TERMINAL


def transition(
    progress: RetryProgress, outcome: AttemptOutcome | None, max_retries: int
) -> RetryProgress:
    """Return the state that follows *progress* given *outcome*.

    In ``ATTEMPTING`` the outcome is the attempt's result.  In ``BACKOFF`` it
    is ``None`` when the wait elapsed or ``CANCELLED`` when it was
    interrupted.
    """
    if progress.terminal:
        raise ValueError(f"No transition out of terminal state {progress.state.value}")

    if outcome is AttemptOutcome.CANCELLED:
        return replace(progress, state=RetryState.CANCELLED)

    if progress.state is RetryState.BACKOFF:
        if outcome is not None:
            raise ValueError(f"Unexpected outcome {outcome.value} during backoff")
        return RetryProgress(RetryState.ATTEMPTING, progress.attempt + 1)

    if outcome is AttemptOutcome.SUCCESS:
        return replace(progress, state=RetryState.SUCCESS)
    if outcome in _RETRYABLE and progress.attempt < max_retries:
        return replace(progress, state=RetryState.BACKOFF)
    if outcome in _RETRYABLE or outcome is AttemptOutcome.STREAM_INTERRUPTED:
        return replace(progress, state=RetryState.EXHAUSTED)
    raise ValueError(f"Attempt produced no outcome: {outcome!r}")


def classify_failure(exc: GatewayError) -> AttemptOutcome:
    """Map an attempt-level exception to its outcome."""
    if isinstance(exc, StreamInterruptedError):
        return AttemptOutcome.STREAM_INTERRUPTED
    if isinstance(exc, MalformedResponseError):
        return AttemptOutcome.MALFORMED_RESPONSE
    if isinstance(exc, TransportError):
        return AttemptOutcome.TRANSPORT_ERROR
    raise TypeError(f"{type(exc).__name__} is not an attempt-level error")


# ── Cancellation race ───────────────────────────────────────────────────────


async def race_cancellation(
    awaitable: Awaitable[T], listener: CancellationListener
) -> T:
    """Await *awaitable* unless a cancellation signal arrives first.

    Whichever finishes first wins; the loser is cancelled.  If both are ready
    at once the cancellation wins.  A closed broadcaster can no longer signal,
    so the operation is then simply awaited to completion.
    """
    op_task = asyncio.ensure_future(awaitable)
    cancel_task = asyncio.ensure_future(listener.wait())
    try:
        done, _ = await asyncio.wait(
            {op_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if cancel_task in done and cancel_task.result() is ListenerStatus.SIGNALLED:
            raise GenerationCancelledError()
        return await op_task
    finally:
        pending = [t for t in (op_task, cancel_task) if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


# ── Engine ──────────────────────────────────────────────────────────────────


class RetryEngine:
    """Drives one call through the retry state machine.

    Parameters
    ----------
    broadcaster:
        Shared cancellation source; one listener is subscribed per call.
    policy:
        Attempt ceiling and backoff timing.
    sleep:
        Coroutine used for backoff slices (injectable for tests).
    """

    def __init__(
        self,
        broadcaster: CancellationBroadcaster,
        policy: RetryPolicy | None = None,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._broadcaster = broadcaster
        self._policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def broadcaster(self) -> CancellationBroadcaster:
        return self._broadcaster

    async def run(
        self,
        operation: Callable[[], Awaitable[str]],
        *,
        timeout_s: float | None = None,
        label: str = "generate",
    ) -> RetryResult:
        """Run *operation* until it succeeds, is cancelled, or runs out of attempts.

        *operation* performs one exchange and raises an attempt-level
        :class:`GatewayError` on failure.  When *timeout_s* is given, each
        attempt is bounded by it and overrunning counts as a transport error.

        Raises :class:`GenerationCancelledError` or
        :class:`ExhaustedRetriesError`.
        """
        progress = RetryProgress()
        attempts: list[GenerationAttempt] = []
        waited_ms = 0
        text = ""
        last_error: GatewayError | None = None

        with self._broadcaster.subscribe() as listener:
            while not progress.terminal:
                if progress.state is RetryState.ATTEMPTING:
                    outcome, text, last_error = await self._attempt(
                        operation, listener, timeout_s
                    )
                    attempts.append(
                        GenerationAttempt(
                            number=progress.attempt,
                            waited_ms=waited_ms,
                            outcome=outcome,
                            error=str(last_error) if last_error else None,
                        )
                    )
                    if last_error is not None:
                        logger.warning(
                            "%s attempt %d/%d failed (%s): %s",
                            label,
                            progress.attempt,
                            self._policy.max_retries,
                            outcome.value,
                            last_error,
                        )
                    progress = transition(progress, outcome, self._policy.max_retries)
                else:
                    waited_ms = backoff_delay_ms(progress.attempt, self._policy.base_delay_ms)
                    logger.info("%s backing off %d ms before retry", label, waited_ms)
                    interrupted = await self._backoff(listener, waited_ms)
                    progress = transition(
                        progress,
                        AttemptOutcome.CANCELLED if interrupted else None,
                        self._policy.max_retries,
                    )

        if progress.state is RetryState.SUCCESS:
            return RetryResult(text=text, attempts=tuple(attempts))
        if progress.state is RetryState.CANCELLED:
            logger.info("%s cancelled after %d attempt(s)", label, len(attempts))
            raise GenerationCancelledError(attempts)

        if last_error is None:
            raise RuntimeError(f"{label} exhausted without a recorded attempt error")
        logger.error("%s gave up after %d attempt(s): %s", label, len(attempts), last_error)
        raise ExhaustedRetriesError(attempts, last_error) from last_error

    # ── Side effects ────────────────────────────────────────────────────

    async def _attempt(
        self,
        operation: Callable[[], Awaitable[str]],
        listener: CancellationListener,
        timeout_s: float | None,
    ) -> tuple[AttemptOutcome, str, GatewayError | None]:
        if listener.poll_non_blocking() is ListenerStatus.SIGNALLED:
            return AttemptOutcome.CANCELLED, "", None
        try:
            text = await race_cancellation(
                _with_timeout(operation(), timeout_s), listener
            )
        except GenerationCancelledError:
            return AttemptOutcome.CANCELLED, "", None
        except (TransportError, MalformedResponseError) as exc:
            return classify_failure(exc), "", exc
        return AttemptOutcome.SUCCESS, text, None

    async def _backoff(self, listener: CancellationListener, delay_ms: int) -> bool:
        """Sleep *delay_ms* in slices; return True if cancelled meanwhile."""
        remaining = delay_ms
        while remaining > 0:
            if listener.poll_non_blocking() is ListenerStatus.SIGNALLED:
                return True
            step = min(self._policy.poll_slice_ms, remaining)
            await self._sleep(step / 1000)
            remaining -= step
        return listener.poll_non_blocking() is ListenerStatus.SIGNALLED


async def _with_timeout(awaitable: Awaitable[str], timeout_s: float | None) -> str:
    if timeout_s is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout_s)
    except asyncio.TimeoutError as exc:
        raise GenerationTimeoutError(f"Attempt exceeded {timeout_s:g}s") from exc
