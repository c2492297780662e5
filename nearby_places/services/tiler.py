"""
Splits oversized search areas into bounded sub-requests.

A search larger than 1.5 tiles becomes a center tile plus a ring of tiles at
60% of the radius. Tiles overlap, so results are deduplicated by id as each
batch lands.
"""

import asyncio
import logging
import math
from typing import Awaitable, Callable, Dict, List, Optional

from nearby_places.models import Place, Tile
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError

logger = logging.getLogger(__name__)

TILE_SIZE = 25000
METERS_PER_DEGREE = 111320
RING_FRACTION = 0.6
MIN_COS_LAT = 0.01


def plan_tiles(lat: float, lng: float, radius: float, tile_size: float = TILE_SIZE) -> List[Tile]:
    """Cover a circle with tiles of radius ``tile_size``.

    Args:
        lat: Center latitude
        lng: Center longitude
        radius: Search radius in meters
        tile_size: Radius of each tile in meters

    Returns:
        A single tile equal to the input when the search is small enough,
        otherwise a center tile followed by the ring tiles
    """
    if radius <= tile_size * 1.5:
        return [Tile(lat, lng, radius)]

    tiles = [Tile(lat, lng, tile_size)]

    ring_radius = radius * RING_FRACTION
    circumference = 2 * math.pi * ring_radius
    ring_count = math.ceil(circumference / (tile_size * 1.5))

    for i in range(ring_count):
        angle = (2 * math.pi * i) / ring_count
        tile_lat = lat + (ring_radius / METERS_PER_DEGREE) * math.cos(angle)
        # longitude degrees scale with the tile's own latitude
        cos_lat = max(math.cos(math.radians(tile_lat)), MIN_COS_LAT)
        lng_offset = (ring_radius / (METERS_PER_DEGREE * cos_lat)) * math.sin(angle)
        tiles.append(Tile(tile_lat, lng + lng_offset, tile_size))

    return tiles


async def fetch_tiled(
    tiles: List[Tile],
    fetch_tile: Callable[[Tile], Awaitable[List[Place]]],
    max_concurrent: int = 3,
    token: Optional[CancellationToken] = None,
) -> List[Place]:
    """Fetch every tile in batches of ``max_concurrent`` and merge by id.

    A failing tile contributes nothing; cancellation stops the remaining
    batches and propagates.

    Raises:
        RequestCancelledError: If ``token`` fired
    """
    if len(tiles) > 1:
        logger.info(f"Tiling large radius into {len(tiles)} tiles")

    seen: Dict[str, Place] = {}

    for start in range(0, len(tiles), max_concurrent):
        if token is not None:
            token.raise_if_cancelled()

        batch = tiles[start:start + max_concurrent]
        outcomes = await asyncio.gather(*(fetch_tile(tile) for tile in batch), return_exceptions=True)

        for tile, outcome in zip(batch, outcomes):
            if isinstance(outcome, RequestCancelledError):
                raise outcome
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"Tile fetch failed at {tile.lat:.4f},{tile.lng:.4f}: {outcome}")
                continue
            for place in outcome or []:
                if place.id not in seen:
                    seen[place.id] = place

    return list(seen.values())
