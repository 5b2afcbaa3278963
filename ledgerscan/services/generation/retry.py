"""
Retry loop for generation attempts.

The policy is plain data; which errors are worth another attempt is decided by
``is_retryable``. Attempts are strictly sequential.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from ...core.errors import GenerationError, GenerationResponseError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attributes:
        max_retries: Retries after the first attempt (2 means 3 attempts total)
        backoff_seconds: Delay before the first retry
        backoff_factor: Multiplier applied to the delay for each further retry
        max_backoff_seconds: Upper bound for a single delay
        retryable_status_codes: HTTP statuses treated as transient
        retry_server_errors: Treat every 5xx status as transient
        retryable_exceptions: Exception types treated as transient
    """

    max_retries: int = 2
    backoff_seconds: float = 1.0
    backoff_factor: float = 2.0
    max_backoff_seconds: float = 30.0
    retryable_status_codes: frozenset[int] = frozenset({429})
    retry_server_errors: bool = True
    retryable_exceptions: tuple[type[BaseException], ...] = field(
        default=(
            httpx.ConnectError,
            httpx.TimeoutException,
            TimeoutError,
            asyncio.TimeoutError,
            ConnectionRefusedError,
            GenerationResponseError,
        )
    )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after zero-based ``attempt`` failed"""
        return min(self.backoff_seconds * (self.backoff_factor ** attempt), self.max_backoff_seconds)


DEFAULT_POLICY = RetryPolicy()

# Failures an attempt can end in; anything else is a bug and propagates
ATTEMPT_ERRORS = (httpx.HTTPError, GenerationError, TimeoutError, OSError, ValueError)


def is_retryable(error: BaseException, policy: RetryPolicy = DEFAULT_POLICY) -> bool:
    """Connection refused, timeouts, HTTP 429/5xx and unparsable completions are transient"""
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status in policy.retryable_status_codes or (
            policy.retry_server_errors and 500 <= status < 600
        )
    return isinstance(error, policy.retryable_exceptions)


@dataclass(frozen=True)
class RetryResult:
    value: Any = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def describe_error(error: BaseException) -> str:
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code} from {error.request.url}"
    if isinstance(error, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
        return f"timeout ({type(error).__name__})"
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


async def run_with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy = DEFAULT_POLICY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult:
    """
    Await ``operation`` until it succeeds, fails permanently, or attempts run out.

    Errors outside ``ATTEMPT_ERRORS`` are not caught.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Attempt count, backoff curve and retryable classes
        sleep: Awaitable sleep, injectable for tests

    Returns:
        RetryResult holding either the value or the last error
    """
    last_error: BaseException | None = None

    for attempt in range(policy.max_attempts):
        try:
            value = await operation()
            return RetryResult(value=value, attempts=attempt + 1)
        except ATTEMPT_ERRORS as e:
            last_error = e
            retryable = is_retryable(e, policy)
            logger.warning(
                "Generation attempt failed",
                attempt=attempt + 1,
                max_attempts=policy.max_attempts,
                retryable=retryable,
                error=describe_error(e),
            )
            if not retryable or attempt == policy.max_attempts - 1:
                return RetryResult(error=e, attempts=attempt + 1)
            await sleep(policy.delay_for(attempt))

    return RetryResult(error=last_error, attempts=policy.max_attempts)
