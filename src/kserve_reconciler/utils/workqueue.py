# ABOUTME: Work queue running reconciliation cycles with per-key serialization
# ABOUTME: Retries retryable failures with tenacity backoff under a per-attempt deadline

"""
Work queue for reconciliation cycles.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

The engine runs ONE cycle and reports what happened. Everything about WHEN
cycles run lives here:

1. SERIALIZATION: two cycles for the same key (same managed object) never
   overlap. Without this, two concurrent cycles could both see "absent"
   and both try to create.
2. CONCURRENCY: cycles for different keys run in parallel, at most
   ``max_concurrency`` at a time.
3. DEADLINE: every attempt runs under ``asyncio.timeout(cycle_timeout)``.
   Hitting it cancels whatever API call is in flight.
4. RETRY: conflicts, create races, transient API errors and deadline
   misses are retried with exponential backoff. Anything else is raised
   after the first attempt.

=============================================================================
WHY RETRY THE WHOLE CYCLE?
=============================================================================

A 409 Conflict means our fetched copy is stale. Sending the same PUT again
would fail again. Re-running the cycle re-fetches, recomputes the delta and
applies whatever is needed NOW, which may be nothing at all.

=============================================================================
TENACITY
=============================================================================

    AsyncRetrying(
        retry=retry_if_exception(is_retryable),   # which failures to retry
        stop=stop_after_attempt(5),               # give up after 5 attempts
        wait=wait_exponential(min=1, max=30),     # 1s, 2s, 4s, ... 30s
        reraise=True,                             # raise the last error itself
    )

``async for attempt in retrying: with attempt: ...`` runs the block until it
succeeds or the policy gives up.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from kserve_reconciler.utils.logging import set_correlation_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

    from kserve_reconciler.config import QueueSettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether a failed cycle is worth another attempt.

    ReconcileError and StoreError carry a ``retryable`` flag. A missed
    deadline (TimeoutError from asyncio.timeout) is retried as well.
    """
    if isinstance(error, TimeoutError):
        return True
    return bool(getattr(error, "retryable", False))


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Reconciliation attempt failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(error),
        wait=round(retry_state.next_action.sleep, 2) if retry_state.next_action else None,
    )


class WorkQueue:
    """
    Runs work items keyed by the object they touch.

    USAGE:
    ------
        queue = WorkQueue(settings.queue)
        delta = await queue.run(key, lambda: reconciler.reconcile(ns, isvc))

    The factory is called once per attempt, so every retry gets a fresh
    coroutine (and therefore a fresh fetch).
    """

    def __init__(self, settings: QueueSettings) -> None:
        self._settings = settings
        self._semaphore = asyncio.Semaphore(settings.max_concurrency)
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def _hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key``; the entry is dropped once nobody uses it."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run one work item to completion.

        The item runs in its own task so its correlation ID does not leak
        into the caller's context. Cancelling the caller cancels the item.

        Raises:
            The last error of the item when it is not retryable or when
            all attempts are used up.
        """
        return await asyncio.create_task(self._run(key, factory))

    async def run_all(
        self,
        items: Iterable[tuple[str, Callable[[], Awaitable[T]]]],
    ) -> list[T | BaseException]:
        """
        Run several work items concurrently.

        Returns:
            One entry per item in input order: the result, or the exception
            the item ended with. One failing item never stops the others.
        """
        return await asyncio.gather(
            *(self.run(key, factory) for key, factory in items),
            return_exceptions=True,
        )

    async def _run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        set_correlation_id("")
        log = logger.bind(key=key)

        # Key lock first: a cycle waiting on its key must not hold a slot
        async with self._hold(key), self._semaphore:
            log.debug("Work item started")
            retrying = AsyncRetrying(
                retry=retry_if_exception(is_retryable),
                stop=stop_after_attempt(self._settings.max_attempts),
                wait=wait_exponential(
                    multiplier=self._settings.backoff_min,
                    min=self._settings.backoff_min,
                    max=self._settings.backoff_max,
                ),
                before_sleep=_log_retry,
                reraise=True,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        async with asyncio.timeout(self._settings.cycle_timeout):
                            result = await factory()
            except Exception as e:
                log.error("Work item failed", error=str(e), retryable=is_retryable(e))
                raise

        log.debug("Work item finished")
        return result
