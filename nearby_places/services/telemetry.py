"""
Lightweight in-process instrumentation for upstream fetches.

Design:
- ``ApiTelemetry`` keeps a bounded rolling log (oldest dropped first) of every
  fetch attempt and aggregates it on demand. Recording never raises and never
  influences control flow.
- ``EndpointRanker`` orders interchangeable endpoints by a moving average of
  recent latency plus a penalty for recent failures.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, List, Optional
from urllib.parse import urlparse

MAX_LOG_SIZE = 100
SLOW_THRESHOLD_MS = 10000

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_CANCELLED = "cancelled"
STATUS_TIMEOUT = "timeout"


def truncate_endpoint(endpoint: str) -> str:
    """Host plus the first 30 characters of the path; query strings dropped."""
    parsed = urlparse(endpoint)
    if not parsed.hostname:
        return endpoint[:50]
    return parsed.hostname + parsed.path[:30]


class ApiTelemetry:
    """Rolling log of API calls with per-source aggregation."""

    def __init__(self, max_size: int = MAX_LOG_SIZE, slow_threshold_ms: float = SLOW_THRESHOLD_MS,
                 clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.slow_threshold_ms = slow_threshold_ms
        self._clock = clock
        self._log: Deque[Dict[str, Any]] = deque(maxlen=max_size)

    def record(
        self,
        source: str,
        duration_ms: float,
        status: str,
        endpoint: Optional[str] = None,
        result_count: Optional[int] = None,
        error: Optional[str] = None,
        query_size: Optional[int] = None,
        clause_count: Optional[int] = None,
    ) -> None:
        entry = {
            "ts": self._clock(),
            "source": source,
            "endpoint": truncate_endpoint(endpoint) if endpoint else None,
            "duration": round(duration_ms),
            "status": status,
            "result_count": result_count,
            "error": error,
            "query_size": query_size,
            "clause_count": clause_count,
        }
        self._log.append(entry)

        if duration_ms > self.slow_threshold_ms:
            self.logger.warning(f"[API Slow] {source}: {round(duration_ms)}ms {entry['endpoint'] or ''}".rstrip())
        if error:
            self.logger.warning(f"[API Fail] {source}: {error}")

    @property
    def entries(self) -> List[Dict[str, Any]]:
        return list(self._log)

    def stats(self) -> Dict[str, Any]:
        """Aggregate the log by source.

        Returns:
            Dict with ``by_source`` breakdown, ``recent`` (last 10, newest
            first), ``total_calls`` and ``oldest_entry`` (ISO timestamp)
        """
        by_source: Dict[str, Dict[str, Any]] = {}
        sums: Dict[str, Dict[str, float]] = {}

        for entry in self._log:
            source = entry["source"]
            if source not in by_source:
                by_source[source] = {
                    "total": 0,
                    "successes": 0,
                    "failures": 0,
                    "cancelled": 0,
                    "timeouts": 0,
                    "avg_duration": 0,
                    "min_duration": None,
                    "max_duration": 0,
                    "total_results": 0,
                    "avg_query_size": 0,
                    "avg_clause_count": 0,
                }
                sums[source] = {"duration": 0, "query_size": 0, "query_size_n": 0,
                                "clause_count": 0, "clause_count_n": 0}
            s = by_source[source]
            acc = sums[source]
            s["total"] += 1

            status = entry["status"]
            if status == STATUS_SUCCESS:
                s["successes"] += 1
                acc["duration"] += entry["duration"]
                s["min_duration"] = entry["duration"] if s["min_duration"] is None else min(s["min_duration"], entry["duration"])
                s["max_duration"] = max(s["max_duration"], entry["duration"])
                if entry["result_count"] is not None:
                    s["total_results"] += entry["result_count"]
            elif status == STATUS_ERROR:
                s["failures"] += 1
            elif status == STATUS_CANCELLED:
                s["cancelled"] += 1
            elif status == STATUS_TIMEOUT:
                s["timeouts"] += 1

            if entry["query_size"] is not None:
                acc["query_size"] += entry["query_size"]
                acc["query_size_n"] += 1
            if entry["clause_count"] is not None:
                acc["clause_count"] += entry["clause_count"]
                acc["clause_count_n"] += 1

        for source, s in by_source.items():
            acc = sums[source]
            s["avg_duration"] = round(acc["duration"] / s["successes"]) if s["successes"] else 0
            s["avg_query_size"] = round(acc["query_size"] / acc["query_size_n"]) if acc["query_size_n"] else 0
            s["avg_clause_count"] = round(acc["clause_count"] / acc["clause_count_n"]) if acc["clause_count_n"] else 0
            s["failure_rate"] = f"{s['failures'] / s['total'] * 100:.1f}%" if s["total"] else "0%"
            if s["min_duration"] is None:
                s["min_duration"] = 0

        oldest = None
        if self._log:
            oldest = datetime.fromtimestamp(self._log[0]["ts"], tz=timezone.utc).isoformat()

        return {
            "by_source": by_source,
            "recent": list(reversed(list(self._log)[-10:])),
            "total_calls": len(self._log),
            "oldest_entry": oldest,
        }

    def summary(self) -> str:
        """Human readable one-line-per-source digest."""
        lines = ["=== API Telemetry ==="]
        for source, s in self.stats()["by_source"].items():
            lines.append(
                f"{source}: {s['successes']}/{s['total']} ok, {s['avg_duration']}ms avg, {s['failure_rate']} fail"
            )
            if s["avg_clause_count"] > 0:
                lines.append(f"  query: {s['avg_clause_count']} clauses, {s['avg_query_size']} chars")
        return "\n".join(lines)

    def clear(self) -> None:
        self._log.clear()


@dataclass
class EndpointStats:
    avg_latency_ms: Optional[float] = None
    consecutive_failures: int = 0
    last_failure: Optional[float] = None


class EndpointRanker:
    """Orders endpoints fastest and healthiest first.

    Cost is the latency moving average (``default_latency_ms`` until the
    first success) plus ``failure_penalty_ms`` per consecutive failure while
    the last failure is younger than ``failure_window`` seconds. Ties keep
    the configured order.
    """

    def __init__(self, alpha: float = 0.3, default_latency_ms: float = 2000.0,
                 failure_penalty_ms: float = 30000.0, failure_window: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.alpha = alpha
        self.default_latency_ms = default_latency_ms
        self.failure_penalty_ms = failure_penalty_ms
        self.failure_window = failure_window
        self._clock = clock
        self._stats: Dict[str, EndpointStats] = {}

    def record(self, endpoint: str, ok: bool, duration_ms: float) -> None:
        stats = self._stats.setdefault(endpoint, EndpointStats())
        if ok:
            if stats.avg_latency_ms is None:
                stats.avg_latency_ms = duration_ms
            else:
                stats.avg_latency_ms = self.alpha * duration_ms + (1 - self.alpha) * stats.avg_latency_ms
            stats.consecutive_failures = 0
        else:
            stats.consecutive_failures += 1
            stats.last_failure = self._clock()

    def cost(self, endpoint: str) -> float:
        stats = self._stats.get(endpoint)
        if stats is None:
            return self.default_latency_ms
        cost = stats.avg_latency_ms if stats.avg_latency_ms is not None else self.default_latency_ms
        if stats.last_failure is not None and self._clock() - stats.last_failure < self.failure_window:
            cost += self.failure_penalty_ms * stats.consecutive_failures
        return cost

    def rank(self, endpoints: List[str]) -> List[str]:
        return sorted(endpoints, key=self.cost)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            endpoint: {
                "avg_latency_ms": stats.avg_latency_ms,
                "consecutive_failures": stats.consecutive_failures,
                "cost": self.cost(endpoint),
            }
            for endpoint, stats in self._stats.items()
        }
