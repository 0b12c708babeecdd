"""
Retry policy for registration lookups.

A fixed delay separates attempts; the last error is handed back to the
caller instead of being raised so it can be recorded on the domain.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .config import RetryConfig

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """Runs an async operation up to `max_attempts` times with a fixed delay."""

    def __init__(
        self,
        config: RetryConfig,
        on_failure: Optional[Callable[[int, Exception], None]] = None,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_attempts and delay_seconds
            on_failure: Optional callback invoked with (attempt, error) after each failure
        """
        self._config = config
        self._on_failure = on_failure

    @property
    def max_attempts(self) -> int:
        return max(1, self._config.max_attempts)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation, retrying on failure.

        No delay follows the final attempt.

        Args:
            operation: The async operation to execute
            is_retryable: Optional predicate; by default every exception is retried

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        last_error: Optional[Exception] = None
        attempts = 0

        while attempts < self.max_attempts:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except Exception as e:
                last_error = e
                attempts += 1
                if self._on_failure is not None:
                    self._on_failure(attempts, e)

                should_retry = is_retryable(e) if is_retryable else True
                if not should_retry or attempts >= self.max_attempts:
                    break

                await asyncio.sleep(self._config.delay_seconds)

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
