"""Fail-open wrapper for external moderation calls.

Tier 2 (link reputation) and tier 3 (AI classification) both sit in the
path of a user sending a message.  Every call to those services goes
through :class:`FailOpenPolicy`: each attempt is bounded by a timeout,
retryable failures are retried a limited number of times, and whatever
still fails is converted into the caller's fallback value instead of an
exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CallOutcome(Generic[T]):
    """Value produced by a guarded call, or the fallback if it failed."""

    value: T
    failed: bool = False
    error: str = ""


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TransportError)):
        return True
    return bool(getattr(exc, "retryable", False))


def _describe(exc: BaseException, timeout: float) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return f"timed out after {timeout:g}s"
    return str(exc) or exc.__class__.__name__


class FailOpenPolicy:
    """Timeout + retry + fallback, applied uniformly to external calls.

    Parameters
    ----------
    name : str
        Label used in log messages (``"link-reputation"``, ``"ai-classifier"``).
    timeout : float
        Seconds allowed per attempt.
    attempts : int
        Total attempts, including the first.  Only timeouts, transport errors
        and errors flagged ``retryable`` are retried.
    backoff : float
        Multiplier for the exponential wait between attempts.
    """

    def __init__(
        self,
        name: str,
        timeout: float = 5.0,
        attempts: int = 1,
        backoff: float = 0.25,
    ) -> None:
        self.name = name
        self.timeout = timeout
        self.attempts = max(1, attempts)
        self.backoff = backoff

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        fallback: T,
        **kwargs: Any,
    ) -> CallOutcome[T]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff, max=2),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    value = await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
        except Exception as exc:
            error = _describe(exc, self.timeout)
            logger.warning("%s call failed, failing open: %s", self.name, error)
            return CallOutcome(value=fallback, failed=True, error=error)
        return CallOutcome(value=value)
