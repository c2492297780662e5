"""Upstream place sources and their shared error taxonomy."""

from nearby_places.providers.base import (
    AllEndpointsFailedError,
    AllSourcesFailedError,
    PlaceSource,
    Provider,
    ProviderAuthError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderRateLimitError,
    ProviderTimeoutError,
    is_auth_error,
)
from nearby_places.providers.opentripmap_provider import OpenTripMapProvider
from nearby_places.providers.overpass_provider import OverpassProvider
from nearby_places.providers.wikidata_provider import WikidataImageProvider
from nearby_places.providers.wikipedia_provider import WikipediaGeosearchProvider

__all__ = [
    "AllEndpointsFailedError",
    "AllSourcesFailedError",
    "PlaceSource",
    "Provider",
    "ProviderAuthError",
    "ProviderError",
    "ProviderNotAvailableError",
    "ProviderRateLimitError",
    "ProviderTimeoutError",
    "is_auth_error",
    "OpenTripMapProvider",
    "OverpassProvider",
    "WikidataImageProvider",
    "WikipediaGeosearchProvider",
]
