"""
Provider base interfaces and error taxonomy.

This module defines the contract every upstream place source implements so
the pipeline can:
- Fan out to all sources with one call shape
- Route every network call through the shared source gate
- Record every attempt to telemetry with the same fields
- Classify failures (auth, rate limit, timeout) consistently
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import time

from nearby_places.models import Place
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError, run_cancellable

AUTH_STATUSES = (401, 403)


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, message: str, provider_name: Optional[str] = None, details: Optional[Dict] = None):
        """Initialize provider error.

        Args:
            message: Error message
            provider_name: Name of the provider that failed
            details: Additional error details (``status`` holds the HTTP code)
        """
        super().__init__(message)
        self.provider_name = provider_name
        self.details = details or {}

    @property
    def status(self) -> Optional[int]:
        return self.details.get("status")


class ProviderNotAvailableError(ProviderError):
    """Raised when a provider is not available (circuit open, trial in use)."""
    pass


class ProviderRateLimitError(ProviderError):
    """Raised when provider rate limit is exceeded."""
    pass


class ProviderTimeoutError(ProviderError):
    """Raised when provider request times out."""
    pass


class ProviderAuthError(ProviderError):
    """Raised on 401/403: retrying cannot help until credentials change."""
    pass


class AllEndpointsFailedError(ProviderError):
    """Raised when every interchangeable endpoint of a source failed."""
    pass


class AllSourcesFailedError(Exception):
    """Raised when every source failed for one discovery request."""

    def __init__(self, errors: Dict[str, BaseException]):
        summary = ", ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(f"All sources failed ({summary})")
        self.errors = errors


def is_auth_error(exc: BaseException) -> bool:
    """True for failures a retry cannot fix (bad or missing credentials)."""
    if isinstance(exc, ProviderAuthError):
        return True
    status = getattr(exc, "status", None)
    if status is None and isinstance(exc, ProviderError):
        status = exc.details.get("status")
    return status in AUTH_STATUSES


class Provider:
    """Upstream API client that calls through the shared ``SourceGate`` and
    reports every request to ``ApiTelemetry``.
    """

    name: str = "source"

    def __init__(self, gate, telemetry, session=None):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.gate = gate
        self.telemetry = telemetry
        self.session = session

    async def _timed(self, endpoint: str, call: Callable[[], Any], token: Optional[CancellationToken] = None,
                     count_results: Optional[Callable[[Any], int]] = None, query_size: Optional[int] = None,
                     clause_count: Optional[int] = None) -> Any:
        """Run one network call and record its outcome to telemetry."""
        start = time.monotonic()

        def elapsed_ms() -> float:
            return (time.monotonic() - start) * 1000

        try:
            result = await run_cancellable(call(), token)
        except (RequestCancelledError, asyncio.CancelledError):
            self.telemetry.record(self.name, elapsed_ms(), "cancelled", endpoint=endpoint,
                                  query_size=query_size, clause_count=clause_count)
            raise
        except ProviderTimeoutError as e:
            self.telemetry.record(self.name, elapsed_ms(), "timeout", endpoint=endpoint, error=str(e),
                                  query_size=query_size, clause_count=clause_count)
            raise
        except Exception as e:
            self.telemetry.record(self.name, elapsed_ms(), "error", endpoint=endpoint, error=str(e),
                                  query_size=query_size, clause_count=clause_count)
            raise
        self.telemetry.record(
            self.name,
            elapsed_ms(),
            "success",
            endpoint=endpoint,
            result_count=count_results(result) if count_results else None,
            query_size=query_size,
            clause_count=clause_count,
        )
        return result


class PlaceSource(Provider, ABC):
    """Base place source: fetches places around a point."""

    @property
    def enabled(self) -> bool:
        """False when the source is not configured and will contribute nothing."""
        return True

    @abstractmethod
    async def fetch(self, lat: float, lng: float, radius: float, category: Optional[str] = None,
                    token: Optional[CancellationToken] = None) -> List[Place]:
        """Fetch places around a point.

        Args:
            lat: Latitude
            lng: Longitude
            radius: Search radius in meters
            category: Optional category key to narrow the query
            token: Optional cancellation token

        Returns:
            List of places (empty when the source has nothing or no key)

        Raises:
            ProviderError: If the source failed or is short-circuited
            RequestCancelledError: If ``token`` fired
        """
        pass

    def _rows_to_places(self, rows: Optional[List[Dict[str, Any]]]) -> List[Place]:
        if rows is None:
            raise ProviderNotAvailableError(f"{self.name} circuit open", provider_name=self.name)
        return [Place.from_dict(row) for row in rows]
