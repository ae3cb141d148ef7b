"""Bounded retry with a fixed (or optionally growing) delay."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from jira_sync_db.errors import RetryExhaustedError, classify_exception
from jira_sync_db.logging import get_logger

if TYPE_CHECKING:
    from jira_sync_db.config import RetryConfig

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_ms: int = 1000,
    *,
    context: str | None = None,
    backoff_multiplier: float = 1.0,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run an async operation, retrying transient failures.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        max_attempts: Total attempts including the first
        delay_ms: Wait between attempts
        context: Label attached to errors and log lines
        backoff_multiplier: Delay growth per attempt (1.0 keeps it fixed)
        sleep: Sleep function (injectable for tests)

    Returns:
        The operation's result

    Raises:
        SyncError: Immediately for non-retryable failures
        RetryExhaustedError: When every attempt failed with a retryable error
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    label = context or "operation"
    attempt = 1
    while True:
        try:
            result = await operation()
        except Exception as exc:
            error = classify_exception(exc, context=context)
            if not error.retryable:
                if error is exc:
                    raise
                raise error from exc
            if attempt >= max_attempts:
                logger.error("{} failed after {} attempts: {}", label, max_attempts, error.message)
                raise RetryExhaustedError(error, max_attempts, context=context) from exc
            delay = delay_ms / 1000 * backoff_multiplier ** (attempt - 1)
            logger.warning(
                "{} failed (attempt {}/{}), retrying in {:.1f}s: {}",
                label,
                attempt,
                max_attempts,
                delay,
                error.message,
            )
            await sleep(delay)
            attempt += 1
            continue

        if attempt > 1:
            logger.info("{} succeeded after {} attempts", label, attempt)
        return result


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters bundled for reuse across calls."""

    max_attempts: int = 3
    delay_ms: int = 1000
    backoff_multiplier: float = 1.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            delay_ms=config.delay_ms,
            backoff_multiplier=config.backoff_multiplier,
        )

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        context: str | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        """Run an operation under this policy."""
        return await with_retry(
            operation,
            self.max_attempts,
            self.delay_ms,
            context=context,
            backoff_multiplier=self.backoff_multiplier,
            sleep=sleep,
        )
