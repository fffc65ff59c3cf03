"""Cancellation tokens and timeout handling for model calls.

A single owner (usually ``run_with_timeout``) creates a token per request and
passes it down to every awaiting call. Providers race their network I/O
against the token via ``CancellationToken.guard`` so an expired request stops
in-flight work instead of finishing in the background.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationCancelled(Exception):
    """Raised inside a guarded call when its token is cancelled."""
    pass


class CancellationToken:
    """Explicit cancellation signal passed by value through async calls."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        Raises:
            OperationCancelled: If the token is (or becomes) cancelled before
                the awaitable completes. The underlying task is cancelled.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled(self.reason or "cancelled")
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        raise OperationCancelled(self.reason or "cancelled")


@dataclass
class TimedOutcome(Generic[T]):
    """Result of a call made under ``run_with_timeout``.

    Exactly one of the three states holds: ``ok`` (value set), ``timed_out``,
    or ``error`` (the exception the call raised).
    """

    value: Optional[T] = None
    timed_out: bool = False
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return not self.timed_out and self.error is None


async def run_with_timeout(
    fn: Callable[[CancellationToken], Awaitable[T]],
    timeout: float,
    label: str = "operation",
) -> TimedOutcome[T]:
    """Run ``fn(token)`` with a deadline.

    The token handed to ``fn`` is cancelled when the deadline passes. Timeouts
    and failures are reported in the returned outcome rather than raised.

    Args:
        fn: Coroutine factory receiving the request's cancellation token
        timeout: Deadline in seconds
        label: Name used in log messages

    Returns:
        TimedOutcome describing how the call ended
    """
    token = CancellationToken()
    try:
        value = await asyncio.wait_for(fn(token), timeout=timeout)
        return TimedOutcome(value=value)
    except asyncio.TimeoutError:
        token.cancel(f"{label} timed out after {timeout:.1f}s")
        logger.info(f"{label}: timed out after {timeout:.1f}s")
        return TimedOutcome(timed_out=True)
    except OperationCancelled:
        logger.info(f"{label}: cancelled ({token.reason})")
        return TimedOutcome(timed_out=True)
    except Exception as e:
        token.cancel(f"{label} failed")
        logger.warning(f"{label} failed: {e}")
        return TimedOutcome(error=e)


__all__ = [
    "CancellationToken",
    "OperationCancelled",
    "TimedOutcome",
    "run_with_timeout",
]
