"""Retry utilities with exponential backoff."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, Type, TypeVar

from ..exceptions import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass
class RetryOutcome(Generic[T]):
    """Result of running an operation under a :class:`RetryScheduler`."""
    success: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_delay: float = 0.0
    exhausted: bool = False


class RetryScheduler:
    """
    Run one async operation with bounded exponential backoff.

    Only exceptions listed in ``transient`` are retried. Anything else ends the
    run at once. The caller always gets a :class:`RetryOutcome` back, so a
    failed unit of work never unwinds the surrounding loop.
    """

    def __init__(
        self,
        max_attempts: int = 7,
        initial_delay: float = 2.0,
        max_delay: float = 128.0,
        backoff_factor: float = 2.0,
        jitter: bool = False,
        transient: Tuple[Type[BaseException], ...] = (RateLimitError,),
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.transient = transient
        self._sleep = sleep

    @classmethod
    def from_config(cls, config, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> "RetryScheduler":
        return cls(
            max_attempts=config.max_attempts,
            initial_delay=config.initial_backoff_seconds,
            max_delay=config.max_backoff_seconds,
            backoff_factor=config.backoff_multiplier,
            jitter=config.jitter,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after failed ``attempt`` (1-based)."""
        delay = self.initial_delay * (self.backoff_factor ** (attempt - 1))

        if self.jitter:
            # Add jitter: ±25% of the delay
            jitter_range = delay * 0.25
            delay = delay + random.uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.max_delay))

    async def run(self, operation: Callable[[], Awaitable[T]], description: str = "operation") -> RetryOutcome[T]:
        total_delay = 0.0

        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
                return RetryOutcome(success=True, value=value, attempts=attempt, total_delay=total_delay)

            except self.transient as e:
                if attempt == self.max_attempts:
                    logger.error(f"{description} failed after {attempt} attempts: {e}")
                    return RetryOutcome(
                        success=False, error=e, attempts=attempt,
                        total_delay=total_delay, exhausted=True,
                    )

                delay = self.delay_for(attempt)
                retry_after = getattr(e, "retry_after", None)
                if retry_after:
                    # The server-requested wait is a floor, still bounded by max_delay
                    delay = min(max(delay, float(retry_after)), self.max_delay)
                logger.warning(
                    f"{description}: attempt {attempt}/{self.max_attempts} failed: {e}. "
                    f"Retrying in {delay:.2f} seconds..."
                )
                await self._sleep(delay)
                total_delay += delay

            except Exception as e:
                logger.error(f"{description} failed with non-retryable error: {e}")
                return RetryOutcome(success=False, error=e, attempts=attempt, total_delay=total_delay)

        # max_attempts >= 1 guarantees a return inside the loop
        raise AssertionError("unreachable")
