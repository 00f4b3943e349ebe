"""
Bounded retry with exponential backoff for external collaborators.

Each attempt gets its own timeout. Once started, the retry sequence runs to
completion or exhaustion; exhaustion raises a single ExternalDependencyError
with the last underlying failure chained as its cause.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from app.config import settings
from app.features.swaps.errors import ErrorCode, ExternalDependencyError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    attempt_timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.NOTARIZATION_MAX_ATTEMPTS,
            backoff_base_seconds=settings.NOTARIZATION_BACKOFF_BASE_SECONDS,
            attempt_timeout_seconds=settings.NOTARIZATION_TIMEOUT_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff after a failed attempt (1-based): base, 2x base, 4x base..."""
        return self.backoff_base_seconds * (2 ** (attempt - 1))


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    dependency: str,
    error_code: ErrorCode,
    operation_name: str,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds or the policy is exhausted.

    Raises:
        ExternalDependencyError: every attempt failed or timed out
    """
    last_error: BaseException | None = None
    attempts = max(1, policy.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout_seconds)

        except (TimeoutError, *retry_on) as exc:
            last_error = exc

            if attempt == attempts:
                break

            wait_time = policy.delay_for(attempt)
            logger.warning(
                "External call failed, retrying",
                dependency=dependency,
                operation=operation_name,
                attempt=attempt,
                max_attempts=attempts,
                wait_time=wait_time,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )
            await sleep(wait_time)

    logger.error(
        "External call failed after all retries",
        dependency=dependency,
        operation=operation_name,
        attempts=attempts,
        error=str(last_error),
        error_type=type(last_error).__name__,
    )
    raise ExternalDependencyError(
        error_code,
        f"{dependency} {operation_name} failed after {attempts} attempts: {last_error}",
        dependency=dependency,
        attempts=attempts,
        operation=operation_name,
    ) from last_error
