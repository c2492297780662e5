"""
Async utilities for cancellation and best-effort fan-out.

This module provides the pieces every fetch entry point shares:
- A cancellation token that aborts in-flight awaits
- A registry that supersedes older requests made for the same purpose
- A "settle all" gather that keeps per-branch outcomes
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Dict, List, Optional, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


class RequestCancelledError(Exception):
    """Raised when a request is aborted through its cancellation token.

    Not a provider error: circuit breakers never count it and
    partial-failure aggregation always re-raises it.
    """

    def __init__(self, reason: str = "cancelled"):
        super().__init__(f"Request cancelled: {reason}")
        self.reason = reason


class CancellationToken:
    """Cooperative cancellation signal shared by one top-level request."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the token. Awaits running under ``run`` abort immediately."""
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelledError(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    async def run(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the token fires first.

        When the token fires the underlying task is cancelled and
        ``RequestCancelledError`` is raised.

        Args:
            aw: Coroutine or future to await

        Returns:
            Result of ``aw``

        Raises:
            RequestCancelledError: If the token fired before ``aw`` finished
        """
        if self._event.is_set():
            if inspect.iscoroutine(aw):
                aw.close()
            raise RequestCancelledError(self.reason or "cancelled")

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        # Let the aborted task unwind (close sockets, release locks) before reporting
        await asyncio.gather(task, return_exceptions=True)
        raise RequestCancelledError(self.reason or "cancelled")


async def run_cancellable(aw: Awaitable[T], token: Optional[CancellationToken] = None) -> T:
    """Await ``aw`` under ``token`` when one is given."""
    if token is None:
        return await aw
    return await token.run(aw)


class RequestScope:
    """Keeps the latest token per logical purpose.

    Beginning a new request for a purpose (say, the main list after the user
    switched category) cancels whatever was still running for it, so stale
    results can never overwrite fresher ones.
    """

    def __init__(self):
        self._active: Dict[str, CancellationToken] = {}

    def begin(self, purpose: str) -> CancellationToken:
        previous = self._active.get(purpose)
        if previous is not None and not previous.cancelled:
            logger.debug(f"Superseding in-flight request for {purpose}")
            previous.cancel("superseded")
        token = CancellationToken()
        self._active[purpose] = token
        return token

    def cancel(self, purpose: str) -> None:
        token = self._active.pop(purpose, None)
        if token is not None:
            token.cancel()

    def cancel_all(self) -> None:
        for purpose in list(self._active):
            self.cancel(purpose)

    def active(self, purpose: str) -> Optional[CancellationToken]:
        return self._active.get(purpose)


async def settle_all(*aws: Awaitable[Any]) -> List[Any]:
    """Run awaitables concurrently and return a result-or-exception per branch.

    Cancellation is never treated as a branch outcome: if any branch was
    cancelled the cancellation is re-raised once every branch has settled.

    Args:
        *aws: Awaitables to run

    Returns:
        List of results or ``Exception`` instances in input order
    """
    outcomes = await asyncio.gather(*aws, return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, RequestCancelledError):
            raise outcome
        if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
            raise outcome
    return list(outcomes)
