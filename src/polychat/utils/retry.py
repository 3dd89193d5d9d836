"""
Bounded retry with exponential backoff.

'RetryPolicy.run' is an explicit attempt loop: each failure is classified by the
error's 'retryable' flag, non-retryable errors propagate on the spot, and after
'max_attempts' retryable failures the last error is wrapped in
'UpstreamUnavailableError'. The sleep function is injectable so tests can count
backoff delays without waiting for them.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from polychat.errors import PolychatError, UpstreamUnavailableError

T = TypeVar("T")


class RetryPolicy(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    backoff_seconds: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)

    def delay_for(self, attempt: int) -> float:
        """Delay after the 'attempt'-th failure (1-based)."""
        return self.backoff_seconds * self.backoff_multiplier ** (attempt - 1)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except PolychatError as e:
                if not e.retryable:
                    raise
                if attempt >= self.max_attempts:
                    raise UpstreamUnavailableError(
                        f"{description} failed after {attempt} attempts: {e.message}",
                        attempts=attempt,
                    ) from e
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description} failed with {e.kind} (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s"
                )
            await sleep(delay)
            attempt += 1
