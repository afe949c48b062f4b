"""
Retry/backoff wrapper for fallible provider calls.

The executor retries only failures the classifier marks transient. Permanent
failures propagate on the first attempt. When the retry budget is spent the
last cause is wrapped in StageExecutionFailure.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import requests

from .errors import PermanentProviderError, StageExecutionFailure, TransientProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_base_seconds: float = 2.0

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based): base ** retry_number"""
        if self.backoff_base_seconds <= 0:
            return 0.0
        return float(self.backoff_base_seconds ** retry_number)

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_retries=int(config.get("retry.max_retries", 3)),
            backoff_base_seconds=float(config.get("retry.backoff_base_seconds", 2.0)),
        )


def is_transient(exc: BaseException) -> bool:
    """Classify a failure as retry-eligible"""
    if isinstance(exc, PermanentProviderError):
        return False
    if isinstance(exc, TransientProviderError):
        return True
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError))


class RetryExecutor:
    """Runs an async operation under a RetryPolicy"""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        classifier: Callable[[BaseException], bool] = is_transient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.classifier = classifier
        self._sleep = sleep

    async def execute(self, stage: str, operation: Callable[[], Awaitable[Any]], label: str = "") -> Any:
        name = f"{stage}:{label}" if label else stage
        attempts = self.policy.max_attempts
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            logger.info(f"[retry] {name} attempt {attempt}/{attempts} starting")
            try:
                result = await operation()
            except Exception as e:
                last_error = e
                if not self.classifier(e):
                    logger.error(
                        f"[retry] {name} attempt {attempt}/{attempts} failed permanently: "
                        f"{type(e).__name__}: {e}"
                    )
                    raise
                if attempt == attempts:
                    logger.error(
                        f"[retry] {name} attempt {attempt}/{attempts} failed; retries exhausted: "
                        f"{type(e).__name__}: {e}"
                    )
                    break
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    f"[retry] {name} attempt {attempt}/{attempts} failed transiently: "
                    f"{type(e).__name__}: {e}; retrying in {delay:.1f}s"
                )
                await self._sleep(delay)
            else:
                logger.info(f"[retry] {name} attempt {attempt}/{attempts} succeeded")
                return result

        raise StageExecutionFailure(stage, last_error, attempts) from last_error
