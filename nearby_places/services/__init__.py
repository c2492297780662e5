"""Shared stores of the discovery pipeline: cache, gate, tiler, telemetry."""

from nearby_places.services.geo_cache import GeoCache, make_cache_key, make_key
from nearby_places.services.source_gate import CircuitState, SourceGate
from nearby_places.services.telemetry import ApiTelemetry, EndpointRanker
from nearby_places.services.tiler import fetch_tiled, plan_tiles

__all__ = [
    "GeoCache",
    "make_cache_key",
    "make_key",
    "CircuitState",
    "SourceGate",
    "ApiTelemetry",
    "EndpointRanker",
    "fetch_tiled",
    "plan_tiles",
]
