"""
Bounded exponential-backoff retry.

RetryPolicy wraps any fallible async operation. It runs the operation and,
on failure, waits `delay`, doubles it, and tries again until the retry
budget is spent; then the last exception propagates unchanged.

Invariants:
    - Total attempts = max_attempts + 1 (first try plus retries)
    - Delays are initial, 2*initial, 4*initial, ... with no jitter
    - asyncio.CancelledError is never retried
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_INITIAL_DELAY_MS = 1000


@dataclass
class RetryState:
    """Per-call retry bookkeeping.

    Attributes:
        attempts_remaining: Retries still allowed after the current attempt
        next_delay_ms: Delay before the next retry
    """

    attempts_remaining: int
    next_delay_ms: int


class RetryPolicy:
    """Generic exponential-backoff executor.

    Example:
        >>> policy = RetryPolicy()
        >>> doc_id = await policy.execute(lambda: store.add_document(path, data))
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the policy.

        Args:
            max_attempts: Default number of retries after the first try
            initial_delay_ms: Default delay before the first retry
            sleep: Coroutine function used to wait (seconds)
        """
        _check_bounds(max_attempts, initial_delay_ms)
        self.max_attempts = max_attempts
        self.initial_delay_ms = initial_delay_ms
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        *,
        description: str = "operation",
    ) -> T:
        """Run operation, retrying failures with exponential backoff.

        Args:
            operation: Zero-argument coroutine function; called once per attempt
            max_attempts: Override of the policy's retry count
            initial_delay_ms: Override of the policy's first delay
            description: Label used in log records

        Returns:
            The operation's result

        Raises:
            Exception: The last failure, unchanged, once retries are exhausted
        """
        if max_attempts is None:
            max_attempts = self.max_attempts
        if initial_delay_ms is None:
            initial_delay_ms = self.initial_delay_ms
        _check_bounds(max_attempts, initial_delay_ms)

        state = RetryState(attempts_remaining=max_attempts, next_delay_ms=initial_delay_ms)
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if state.attempts_remaining <= 0:
                    logger.error(
                        f"{description} failed after {attempt} attempts: {e}",
                        extra={"operation": description, "attempts": attempt},
                    )
                    raise

                logger.warning(
                    f"{description} failed, retrying in {state.next_delay_ms}ms: {e}",
                    extra={
                        "operation": description,
                        "attempt": attempt,
                        "delay_ms": state.next_delay_ms,
                    },
                )
                await self._sleep(state.next_delay_ms / 1000)
                state.next_delay_ms *= 2
                state.attempts_remaining -= 1
                attempt += 1


def _check_bounds(max_attempts: int, initial_delay_ms: int) -> None:
    if max_attempts < 0:
        raise ValueError(f"max_attempts must be >= 0, got {max_attempts}")
    if initial_delay_ms < 0:
        raise ValueError(f"initial_delay_ms must be >= 0, got {initial_delay_ms}")
