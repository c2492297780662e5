import asyncio
import math

import pytest

from nearby_places.models import Place, Tile, haversine_meters
from nearby_places.services.tiler import fetch_tiled, plan_tiles
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError


def _place(pid, lat=51.5, lng=-0.12):
    return Place(id=pid, name=f"Place {pid}", lat=lat, lng=lng, type="pub", source="overpass")


def test_small_radius_is_a_single_tile():
    assert plan_tiles(51.5, -0.12, 5000) == [Tile(51.5, -0.12, 5000)]
    assert plan_tiles(51.5, -0.12, 37500) == [Tile(51.5, -0.12, 37500)]


def test_large_radius_gets_center_and_ring():
    tiles = plan_tiles(51.5, -0.12, 100000)

    ring_radius = 60000
    expected_ring = math.ceil(2 * math.pi * ring_radius / 37500)
    assert len(tiles) == expected_ring + 1 == 12
    assert tiles[0] == Tile(51.5, -0.12, 25000)
    assert all(t.radius == 25000 for t in tiles)

    first_ring = tiles[1]
    assert first_ring.lat == pytest.approx(51.5 + ring_radius / 111320)
    assert first_ring.lng == pytest.approx(-0.12)


def test_ring_longitude_offsets_widen_with_latitude():
    equator = plan_tiles(0.0, 0.0, 100000)
    north = plan_tiles(60.0, 0.0, 100000)
    # ring tile east of the center
    quarter = 1 + len(equator[1:]) // 4
    assert abs(north[quarter].lng) > abs(equator[quarter].lng)


@pytest.mark.parametrize("lat", [0.0, 51.5, 65.0])
def test_ring_grows_with_radius_and_leaves_no_gap(lat):
    previous = 0
    for radius in (40000, 100000, 300000):
        tiles = plan_tiles(lat, -0.12, radius)
        assert len(tiles) >= previous
        previous = len(tiles)

        ring = tiles[1:]
        for a, b in zip(ring, ring[1:] + ring[:1]):
            assert haversine_meters(a.lat, a.lng, b.lat, b.lng) <= 1.5 * 25000


@pytest.mark.asyncio
async def test_fetch_tiled_merges_by_id_and_skips_failures():
    tiles = [Tile(51.5, -0.12 + i * 0.1, 25000) for i in range(5)]

    async def fetch_tile(tile):
        if tile is tiles[2]:
            raise RuntimeError("tile timed out")
        return [_place("shared"), _place(f"own_{tile.lng:.2f}")]

    places = await fetch_tiled(tiles, fetch_tile, max_concurrent=2)

    ids = [p.id for p in places]
    assert ids.count("shared") == 1
    assert len(ids) == 5


@pytest.mark.asyncio
async def test_fetch_tiled_limits_concurrency():
    tiles = [Tile(51.5, -0.12, 25000 + i) for i in range(7)]
    in_flight = 0
    peak = 0

    async def fetch_tile(tile):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        return [_place(str(tile.radius))]

    places = await fetch_tiled(tiles, fetch_tile, max_concurrent=3)
    assert peak == 3
    assert len(places) == 7


@pytest.mark.asyncio
async def test_cancellation_stops_remaining_batches():
    tiles = [Tile(51.5, -0.12, 25000 + i) for i in range(9)]
    token = CancellationToken()
    fetched = []

    async def fetch_tile(tile):
        fetched.append(tile)
        token.cancel("superseded")
        return [_place(str(tile.radius))]

    with pytest.raises(RequestCancelledError):
        await fetch_tiled(tiles, fetch_tile, max_concurrent=3, token=token)
    assert len(fetched) == 3


@pytest.mark.asyncio
async def test_cancelled_tile_propagates():
    tiles = [Tile(51.5, -0.12, 25000 + i) for i in range(3)]

    async def fetch_tile(tile):
        if tile is tiles[1]:
            raise RequestCancelledError()
        return [_place(str(tile.radius))]

    with pytest.raises(RequestCancelledError):
        await fetch_tiled(tiles, fetch_tile)
