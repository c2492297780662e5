"""Resilient multi-source discovery of interesting places near a point."""

from nearby_places.models import Place, Tile
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError
from nearby_places.discovery import PlaceDiscovery, discover_places

__all__ = [
    "Place",
    "Tile",
    "CancellationToken",
    "RequestCancelledError",
    "PlaceDiscovery",
    "discover_places",
]
