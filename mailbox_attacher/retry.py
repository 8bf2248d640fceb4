"""Tenacity retry wrapper with cooperative cancellation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt, wait_exponential

from .config import RetryConfig
from .errors import RetryCancelledError

T = TypeVar("T")


class _CancellableBackoff:
    """Backoff sleeper that wakes early and aborts when *cancel* is set."""

    def __init__(
        self,
        cancel: asyncio.Event | None,
        logger: structlog.stdlib.BoundLogger,
        operation_name: str,
    ) -> None:
        self._cancel = cancel
        self._logger = logger
        self._operation_name = operation_name
        self.last_error: BaseException | None = None

    def before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            self.last_error = outcome.exception()
        self._logger.warning(
            "retry_scheduled",
            operation=self._operation_name,
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else 0,
            error=str(self.last_error),
        )

    async def sleep(self, seconds: float) -> None:
        if self._cancel is None:
            await asyncio.sleep(seconds)
            return
        if not self._cancel.is_set() and seconds > 0:
            try:
                await asyncio.wait_for(self._cancel.wait(), timeout=seconds)
            except TimeoutError:
                return
        if self._cancel.is_set():
            raise RetryCancelledError(
                f"{self._operation_name} abandoned: cancellation requested"
            ) from self.last_error


async def retry_call(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    base_interval: float,
    max_interval: float = 60.0,
    cancel: asyncio.Event | None = None,
    operation_name: str = "operation",
    logger: structlog.stdlib.BoundLogger | None = None,
) -> T:
    """Await *operation* up to *max_attempts* times with exponential backoff.

    The first retry waits *base_interval* seconds and every further retry
    doubles it, capped at *max_interval*.  When *cancel* is set between
    attempts, :class:`RetryCancelledError` is raised (chained to the last
    failure) without spending the remaining attempts.  On exhaustion the
    last error is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    backoff = _CancellableBackoff(cancel, logger or structlog.get_logger(), operation_name)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=base_interval, max=max_interval),
        sleep=backoff.sleep,
        before_sleep=backoff.before_sleep,
        reraise=True,
    )
    async def _attempt() -> T:
        return await operation()

    return await retrying(_attempt)


async def retry_with_config(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig,
    *,
    cancel: asyncio.Event | None = None,
    operation_name: str = "operation",
    logger: structlog.stdlib.BoundLogger | None = None,
) -> T:
    """:func:`retry_call` driven by a :class:`RetryConfig`."""
    return await retry_call(
        operation,
        max_attempts=config.max_attempts,
        base_interval=config.interval_seconds,
        max_interval=config.max_interval_seconds,
        cancel=cancel,
        operation_name=operation_name,
        logger=logger,
    )
