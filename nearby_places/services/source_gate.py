"""
Per-source admission control: rate limiting, circuit breaking and
deduplication of identical in-flight requests.

State machine per source::

    closed --(threshold failures | one auth failure)--> open
    open   --(disabled_until passed)-----------------> half_open
    half_open --(trial succeeds)---------------------> closed
    half_open --(trial fails)------------------------> open (next backoff step)

Everything here runs on one event loop, so mutations between suspension
points are atomic and no locking is needed for the state itself. The only
lock is the per-source FIFO queue that spaces requests out.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from nearby_places.config import GateConfig
from nearby_places.providers.base import is_auth_error
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError, run_cancellable


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreaker:
    """Breaker state for one source. ``disabled_until`` uses the gate clock."""
    failures: int = 0
    trip_count: int = 0
    disabled_until: float = 0.0
    state: CircuitState = CircuitState.CLOSED
    half_open_attempts: int = 0


@dataclass
class PendingCall:
    """One shared in-flight call. ``token`` belongs to the ledger, not to any caller."""
    token: CancellationToken
    task: Optional[asyncio.Task] = None
    waiters: int = 0


class SourceGate:
    """Rate limiter, circuit breaker and request ledger for every source."""

    def __init__(self, config: Optional[GateConfig] = None, cache=None,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 wall_clock: Callable[[], float] = time.time):
        self.config = config or GateConfig()
        self.cache = cache
        self.logger = logging.getLogger(self.__class__.__name__)
        self._clock = clock
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._last_request: Dict[str, float] = {}
        self._queues: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, PendingCall] = {}

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def breaker(self, source: str) -> CircuitBreaker:
        if source not in self._breakers:
            self._breakers[source] = CircuitBreaker()
        return self._breakers[source]

    def is_open(self, source: str) -> bool:
        """True when calls to ``source`` must be short-circuited.

        Moves an open breaker to half-open once its backoff has elapsed.
        """
        breaker = self.breaker(source)

        if breaker.state == CircuitState.CLOSED:
            return False

        if breaker.state == CircuitState.OPEN:
            if self._clock() >= breaker.disabled_until:
                breaker.state = CircuitState.HALF_OPEN
                breaker.half_open_attempts = 0
                self.logger.info(f"{source} circuit transitioning to half-open")
                return False
            return True

        return breaker.half_open_attempts >= self.config.half_open_requests

    def admit(self, source: str) -> bool:
        """Claim permission for one call. In half-open this takes the trial slot."""
        if self.is_open(source):
            return False
        breaker = self.breaker(source)
        if breaker.state == CircuitState.HALF_OPEN:
            breaker.half_open_attempts += 1
        return True

    def record_success(self, source: str) -> None:
        breaker = self.breaker(source)
        if breaker.state == CircuitState.HALF_OPEN:
            self.logger.info(f"{source} circuit closed (recovered)")
            breaker.state = CircuitState.CLOSED
            breaker.failures = 0
            breaker.trip_count = 0
            breaker.half_open_attempts = 0
        elif breaker.state == CircuitState.CLOSED:
            breaker.failures = 0

    def record_failure(self, source: str, is_auth_error: bool = False) -> None:
        breaker = self.breaker(source)
        breaker.failures += 1

        if breaker.state == CircuitState.OPEN:
            # a straggler admitted before the trip; the backoff already runs
            return

        threshold = 1 if is_auth_error else self.config.failure_threshold
        if breaker.failures >= threshold or breaker.state == CircuitState.HALF_OPEN:
            self._trip(source, breaker)

    def _trip(self, source: str, breaker: CircuitBreaker) -> None:
        schedule = self.config.reset_schedule
        breaker.state = CircuitState.OPEN
        breaker.half_open_attempts = 0
        breaker.trip_count = min(breaker.trip_count + 1, len(schedule))
        timeout = schedule[breaker.trip_count - 1]
        breaker.disabled_until = self._clock() + timeout
        self.logger.warning(
            f"{source} circuit OPEN - disabled for {round(timeout / 60)} minutes (trip #{breaker.trip_count})"
        )

    def _release_trial(self, source: str) -> None:
        breaker = self.breaker(source)
        if breaker.state == CircuitState.HALF_OPEN and breaker.half_open_attempts > 0:
            breaker.half_open_attempts -= 1

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def wait_for_slot(self, source: str) -> None:
        """Wait until ``source`` may be called again, first come first served."""
        interval = self.config.min_intervals.get(source)
        if not interval:
            return
        queue = self._queues.setdefault(source, asyncio.Lock())
        async with queue:
            last = self._last_request.get(source)
            if last is not None:
                wait = interval - (self._clock() - last)
                if wait > 0:
                    await self._sleep(wait)
            self._last_request[source] = self._clock()

    # ------------------------------------------------------------------
    # Managed call
    # ------------------------------------------------------------------

    async def managed_call(
        self,
        source: str,
        key: str,
        operation: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
        skip_cache: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """Run ``operation`` behind the breaker, cache, ledger and rate limit.

        Args:
            source: Source name (selects interval and breaker)
            key: Cache and deduplication key
            operation: Zero-argument coroutine function doing the network call
            ttl: Cache lifetime for the result
            skip_cache: Bypass the cache lookup (the result is still stored)
            token: Optional cancellation token

        Returns:
            The operation result, or None when the circuit short-circuited

        Raises:
            RequestCancelledError: If ``token`` fired
            Exception: Whatever ``operation`` raised, after being recorded
        """
        if token is not None:
            token.raise_if_cancelled()

        if self.is_open(source):
            self.logger.info(f"{source} circuit open - skipping request")
            return None

        if not skip_cache and self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                return cached

        entry = self._pending.get(key)
        if entry is None or entry.token.cancelled:
            # the cache lookup may have yielded; re-check and claim in one step
            if not self.admit(source):
                self.logger.info(f"{source} circuit open - skipping request")
                return None
            entry = PendingCall(CancellationToken())
            entry.task = asyncio.ensure_future(self._run_pending(source, key, operation, ttl, entry))
            self._pending[key] = entry

        return await self._join(entry, token)

    async def _join(self, entry: PendingCall, token: Optional[CancellationToken]) -> Any:
        """Wait for a shared call under the caller's own token.

        The call itself is aborted only when its last waiter gives up.
        """
        entry.waiters += 1
        try:
            return await run_cancellable(asyncio.shield(entry.task), token)
        except (RequestCancelledError, asyncio.CancelledError) as e:
            if entry.waiters == 1 and not entry.task.done():
                entry.token.cancel("abandoned")
                if isinstance(e, RequestCancelledError):
                    await asyncio.gather(entry.task, return_exceptions=True)
            raise
        finally:
            entry.waiters -= 1

    async def _run_pending(self, source, key, operation, ttl, entry: PendingCall) -> Any:
        try:
            try:
                await run_cancellable(self.wait_for_slot(source), entry.token)
                result = await run_cancellable(operation(), entry.token)
            except (RequestCancelledError, asyncio.CancelledError):
                self._release_trial(source)
                raise
            except Exception as e:
                self.record_failure(source, is_auth_error(e))
                raise

            self.record_success(source)
            if result is not None and self.cache is not None:
                await self.cache.set(key, result, ttl)
            return result
        finally:
            if self._pending.get(key) is entry:
                del self._pending[key]

    def pending_count(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every breaker for debugging."""
        now = self._clock()
        out = {}
        for source, breaker in self._breakers.items():
            disabled_until = None
            if breaker.state == CircuitState.OPEN and breaker.disabled_until > now:
                wall = self._wall_clock() + (breaker.disabled_until - now)
                disabled_until = datetime.fromtimestamp(wall, tz=timezone.utc).isoformat()
            out[source] = {
                "state": breaker.state.value,
                "failures": breaker.failures,
                "trip_count": breaker.trip_count,
                "disabled_until": disabled_until,
            }
        return out

    def reset_circuit(self, source: str) -> None:
        """Manually close a breaker and forget its history."""
        self._breakers[source] = CircuitBreaker()
        self.logger.info(f"{source} circuit manually reset")

    def reset_all(self) -> None:
        """Forget every breaker, rate-limit timestamp and queue."""
        self._breakers.clear()
        self._last_request.clear()
        self._queues.clear()
        self._pending.clear()
