"""
Caller-side retry for gateway results.

The gateway itself never retries. Callers that want retries wrap a
Result-returning coroutine with ``retry_on_failure``; it re-invokes the call
only while the returned failure is marked ``retryable``.
"""

import asyncio
import functools
import random
from typing import Any, Awaitable, Callable, Optional

from shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True,
                 backoff_strategy: str = "exponential",
                 respect_retry_after: bool = True):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.backoff_strategy = backoff_strategy
        self.respect_retry_after = respect_retry_after


async def retry_on_failure(call: Callable[[], Awaitable[Any]],
                           config: Optional[RetryConfig] = None,
                           *,
                           sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                           name: Optional[str] = None) -> Any:
    """Invoke ``call`` until it succeeds, fails non-retryably, or attempts run out.

    ``call`` must return a gateway ``Result``. The last Result is returned
    as-is; nothing is raised for failures.
    """
    config = config or RetryConfig()
    label = name or getattr(call, "__name__", "call")
    logger = get_logger(f"retry.{label}")

    result = None
    for attempt in range(1, config.max_attempts + 1):
        result = await call()

        if result.ok:
            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=label)
            return result

        failure = result.failure
        if not failure.retryable:
            logger.debug(
                "Failure is not retryable",
                attempt=attempt,
                function=label,
                kind=failure.kind.value,
            )
            return result

        if attempt == config.max_attempts:
            logger.error(
                "All retry attempts exhausted",
                attempt=attempt,
                max_attempts=config.max_attempts,
                function=label,
                kind=failure.kind.value,
                error=failure.message,
            )
            return result

        delay = _calculate_delay(attempt, config, failure.retry_after)
        logger.warning(
            "Retry attempt failed, waiting before next attempt",
            attempt=attempt,
            delay=delay,
            function=label,
            kind=failure.kind.value,
            error=failure.message,
        )
        await sleep(delay)

    return result


def with_retry(config: Optional[RetryConfig] = None) -> Callable:
    """Decorator form of ``retry_on_failure`` for Result-returning coroutines."""

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await retry_on_failure(
                lambda: func(*args, **kwargs),
                config,
                name=func.__name__,
            )

        return wrapper

    return decorator


def _calculate_delay(attempt: int, config: RetryConfig, retry_after: Optional[float] = None) -> float:
    """Calculate delay between retry attempts."""
    if config.backoff_strategy == "exponential":
        delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    elif config.backoff_strategy == "linear":
        delay = config.base_delay * attempt
    else:
        delay = config.base_delay

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    if config.respect_retry_after and retry_after is not None:
        delay = max(delay, retry_after)

    return max(0.0, min(delay, config.max_delay))
