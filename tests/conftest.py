"""
Pytest configuration for nearby_places tests.

Environment is pinned before the package is imported so no test ever talks
to a real redis or picks up an OpenTripMap key from the developer's shell.
"""
import asyncio
import fnmatch
import os

os.environ["REDIS_URL"] = ""
os.environ["ENVIRONMENT"] = "testing"
os.environ.pop("OPENTRIPMAP_API_KEY", None)
os.environ.pop("OPENTRIPMAP_KEY", None)

import pytest

from nearby_places.config import CacheConfig, GateConfig
from nearby_places.services.geo_cache import GeoCache
from nearby_places.services.source_gate import SourceGate
from nearby_places.services.telemetry import ApiTelemetry


class FakeClock:
    """Manually advanced clock usable wherever a ``time.time`` is accepted."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.expiry = {}
        self.closed = False

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.expiry[key] = ex

    async def delete(self, key):
        self.store.pop(key, None)

    async def scan_iter(self, match=None):
        for key in list(self.store):
            if match is None or fnmatch.fnmatch(key, match):
                yield key

    async def aclose(self):
        self.closed = True


class BrokenRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")

    async def scan_iter(self, match=None):
        raise ConnectionError("redis down")
        yield  # pragma: no cover

    async def aclose(self):
        pass


class FakeResponse:
    def __init__(self, status=200, payload=None, exc=None):
        self.status = status
        self._payload = payload
        self._exc = exc

    async def __aenter__(self):
        if self._exc is not None:
            raise self._exc
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def json(self, content_type=None):
        return self._payload


class FakeSession:
    """Stands in for ``aiohttp.ClientSession``.

    ``handler(method, url, kwargs)`` returns a FakeResponse; every call is
    recorded in ``calls``.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []
        self.closed = False

    def _request(self, method, url, kwargs):
        self.calls.append((method, url, kwargs))
        return self.handler(method, url, kwargs)

    def get(self, url, **kwargs):
        return self._request("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self._request("POST", url, kwargs)

    async def close(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def broken_redis():
    return BrokenRedis()


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def respond():
    return FakeResponse


@pytest.fixture
def telemetry():
    return ApiTelemetry()


@pytest.fixture
def gate():
    """Gate with no rate limiting, backed by an in-memory cache."""
    return SourceGate(GateConfig(min_intervals={}), GeoCache(CacheConfig()))


@pytest.fixture
def settle():
    """Let scheduled tasks run up to their next real suspension point."""
    async def _settle(rounds=5):
        for _ in range(rounds):
            await asyncio.sleep(0)
    return _settle
