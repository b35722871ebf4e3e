"""Reusable retry policy built on tenacity.

A policy bundles the attempt limit, the wait strategy between attempts and
a predicate deciding which errors are worth retrying. The sleep coroutine is
injectable so tests can observe delays without waiting for them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 5.0


def _always(exc: BaseException) -> bool:
    return isinstance(exc, Exception)


@dataclass
class RetryPolicy:
    """Max attempts + backoff + retryable-error predicate."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff: wait_base = field(default_factory=lambda: wait_fixed(DEFAULT_DELAY_SECONDS))
    retryable: Callable[[BaseException], bool] = _always
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    name: str = "operation"

    @classmethod
    def fixed(
        cls,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        name: str = "operation",
    ) -> RetryPolicy:
        return cls(
            max_attempts=max(1, max_attempts),
            backoff=wait_fixed(delay_seconds),
            retryable=retryable or _always,
            sleep=sleep or asyncio.sleep,
            name=name,
        )

    @classmethod
    def single_attempt(cls, name: str = "operation") -> RetryPolicy:
        return cls(max_attempts=1, backoff=wait_fixed(0), name=name)

    def _log_before_sleep(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0
        logger.warning(
            "%s failed (attempt %d/%d): %s; retrying in %.1fs",
            self.name, state.attempt_number, self.max_attempts, exc, wait,
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.backoff,
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=self._log_before_sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn`` under this policy; the last error is re-raised when attempts run out."""
        return await self.retrying()(fn, *args, **kwargs)
