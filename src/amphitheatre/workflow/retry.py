#!/usr/bin/env python3
"""
Retry policies with backoff and jitter.

Provides the policy object the workflow engine consults between step
attempts, and an async decorator for retrying single cluster operations.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

from amphitheatre.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Retry strategies for different failure types."""

    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    IMMEDIATE = "immediate"
    NO_RETRY = "no_retry"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt ceiling and delay schedule.

    ``jitter`` is a fraction of the computed delay; the actual delay is drawn
    uniformly from ``[delay * (1 - jitter), delay * (1 + jitter)]`` and then
    capped at ``max_delay``.
    """

    max_attempts: int = 3
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    base_delay: float = 1.0
    max_delay: float = 60.0
    jitter: float = 0.1

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays must be >= 0")
        if not 0 <= self.jitter <= 1:
            raise ConfigurationError(f"jitter must be within [0, 1], got {self.jitter}")

    @property
    def retries(self) -> bool:
        return self.strategy is not RetryStrategy.NO_RETRY and self.max_attempts > 1

    def allows_retry(self, attempt: int) -> bool:
        """Whether another attempt may follow the given (1-based) attempt."""
        return self.retries and attempt < self.max_attempts

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        elif self.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = min(self.base_delay * attempt, self.max_delay)
        else:
            return 0.0
        if self.jitter and delay > 0:
            rng = rng or random
            delay *= rng.uniform(1 - self.jitter, 1 + self.jitter)
        return min(delay, self.max_delay)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetryPolicy":
        try:
            strategy = RetryStrategy(data.get("strategy", RetryStrategy.EXPONENTIAL_BACKOFF.value))
        except ValueError:
            valid = ", ".join(s.value for s in RetryStrategy)
            raise ConfigurationError(
                f"Unknown retry strategy: {data.get('strategy')}",
                suggestions=[f"Use one of: {valid}"],
            )
        return cls(
            max_attempts=int(data.get("max_attempts", 3)),
            strategy=strategy,
            base_delay=float(data.get("base_delay", 1.0)),
            max_delay=float(data.get("max_delay", 60.0)),
            jitter=float(data.get("jitter", 0.1)),
        )


def retry_async(
    policy: RetryPolicy,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator to retry a coroutine function on failure.

    Args:
        policy: Attempt ceiling and delay schedule
        exceptions: Exceptions that trigger a retry
        on_retry: Optional callback ``(attempt, max_attempts, delay, exception)``

    Example:
        @retry_async(RetryPolicy(max_attempts=3), exceptions=(ClusterUnavailableError,))
        async def write_status(...):
            ...
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if not policy.allows_retry(attempt):
                        raise
                    delay = policy.delay(attempt)
                    if on_retry:
                        on_retry(attempt, policy.max_attempts, delay, e)
                    else:
                        logger.warning(
                            "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                            func.__name__, attempt, policy.max_attempts, e, delay,
                        )
                    if delay > 0:
                        await asyncio.sleep(delay)

        return wrapper

    return decorator
