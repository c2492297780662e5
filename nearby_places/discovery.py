"""
Place discovery pipeline.

``PlaceDiscovery`` owns the process-wide stores (geo cache, source gate,
telemetry, endpoint ranking) and wires them into the three sources:

    cache (stale-while-revalidate)
      -> fan out: overpass (tiled) | opentripmap | wikipedia
      -> merge/dedupe
      -> score and select

``enrich_place`` fills in description, website and the best image for one
place from OpenTripMap details, the Wikipedia summary and Wikidata.

A source failing only shrinks the result. Every source failing yields an
empty list that is not cached. Cancellation always propagates.
"""

import logging
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp

from nearby_places.config import Config, get_config
from nearby_places.models import Place, haversine_meters
from nearby_places.providers.base import AllSourcesFailedError, PlaceSource
from nearby_places.providers.opentripmap_provider import OpenTripMapProvider, map_otm_kind
from nearby_places.providers.overpass_provider import OverpassProvider
from nearby_places.providers.wikidata_provider import WikidataImageProvider
from nearby_places.providers.wikipedia_provider import WikipediaGeosearchProvider
from nearby_places.services.geo_cache import GeoCache, create_redis_client, make_cache_key
from nearby_places.services.source_gate import SourceGate
from nearby_places.services.telemetry import ApiTelemetry, EndpointRanker
from nearby_places.services.tiler import fetch_tiled, plan_tiles
from nearby_places.src.image_scoring import ImageCandidate, select_best_image
from nearby_places.src.merge import merge_places
from nearby_places.src.place_filter import RecentlyShown, filter_places, get_random_quality_places
from nearby_places.utils.async_utils import CancellationToken, RequestScope, settle_all


class PlaceDiscovery:
    """Multi-source place discovery with shared cache, gate and telemetry."""

    def __init__(
        self,
        config: Optional[Config] = None,
        cache: Optional[GeoCache] = None,
        gate: Optional[SourceGate] = None,
        telemetry: Optional[ApiTelemetry] = None,
        ranker: Optional[EndpointRanker] = None,
        session: Optional[aiohttp.ClientSession] = None,
        overpass: Optional[PlaceSource] = None,
        opentripmap: Optional[PlaceSource] = None,
        wikipedia: Optional[PlaceSource] = None,
        wikidata: Optional[WikidataImageProvider] = None,
    ):
        self.config = config or get_config()
        self.logger = logging.getLogger(self.__class__.__name__)

        cache_config = self.config.cache_config
        providers = self.config.provider_config
        timeouts = self.config.timeout_config

        self.cache = cache or GeoCache(cache_config, create_redis_client(self.config.redis_config))
        self.gate = gate or SourceGate(self.config.gate_config, self.cache)
        self.telemetry = telemetry or ApiTelemetry()
        self.ranker = ranker or EndpointRanker()
        self.session = session
        self._owns_session = False

        self.overpass = overpass or OverpassProvider(
            self.gate, self.telemetry, session,
            endpoints=providers.overpass_urls,
            ranker=self.ranker,
            ttl=cache_config.ttl_for('overpass'),
            timeout_slack=timeouts.overpass_slack,
            user_agent=providers.user_agent,
        )
        self.opentripmap = opentripmap or OpenTripMapProvider(
            self.gate, self.telemetry, session,
            api_key=providers.opentripmap_key,
            base_url=providers.opentripmap_url,
            timeout=timeouts.opentripmap,
            ttl=cache_config.ttl_for('opentripmap'),
            detail_ttl=cache_config.ttl_for('opentripmap_detail'),
        )
        self.wikipedia = wikipedia or WikipediaGeosearchProvider(
            self.gate, self.telemetry, session,
            api_url=providers.wikipedia_url,
            timeout=timeouts.wikipedia,
            ttl=cache_config.ttl_for('wikipedia'),
            user_agent=providers.user_agent,
            rest_url=providers.wikipedia_rest_url,
            summary_ttl=cache_config.ttl_for('wikipedia_summary'),
        )
        self.wikidata = wikidata or WikidataImageProvider(
            self.gate, self.telemetry, session,
            base_url=providers.wikidata_url,
            timeout=timeouts.wikidata,
            ttl=cache_config.ttl_for('wikidata'),
            user_agent=providers.user_agent,
        )

        self.scope = RequestScope()
        self.recent = RecentlyShown(self.config.selection_config.recent_memory)

    @property
    def sources(self) -> List[PlaceSource]:
        return [self.overpass, self.opentripmap, self.wikipedia]

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "PlaceDiscovery":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Start cache housekeeping and open one pooled HTTP session shared by every source."""
        self.cache.start_housekeeping()
        if self.session is not None and not self.session.closed:
            return
        connector = aiohttp.TCPConnector(limit=100, limit_per_host=20, ttl_dns_cache=300)
        self.session = aiohttp.ClientSession(
            connector=connector,
            headers={'User-Agent': self.config.provider_config.user_agent},
        )
        self._owns_session = True
        for source in self.sources:
            source.session = self.session
        self.wikidata.session = self.session

    async def close(self) -> None:
        """Cancel in-flight requests and release the HTTP session and redis client."""
        self.scope.cancel_all()
        await self.cache.close()
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._owns_session = False

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover_places(
        self,
        lat: float,
        lng: float,
        radius_meters: float,
        category: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        count: Optional[int] = None,
        weather: Optional[Mapping[str, Any]] = None,
        sort_by: str = 'smart',
        on_refresh: Optional[Callable[[List[Place]], Any]] = None,
    ) -> List[Place]:
        """Find interesting places around a point.

        Args:
            lat: Latitude
            lng: Longitude
            radius_meters: Search radius in meters
            category: Optional category key (food, nature, culture, ...)
            token: Optional cancellation token
            count: Maximum places returned (default from selection config)
            weather: Mapping with a WMO ``weather_code`` for weather boosts
            sort_by: Selection mode passed to ``filter_places``
            on_refresh: Called with re-selected places when a stale cache
                entry has been refreshed in the background

        Returns:
            Scored places, best effort; empty when every source failed

        Raises:
            RequestCancelledError: If ``token`` fired
        """
        def select(places: List[Place]) -> List[Place]:
            return self._select(places, lat, lng, category, count, weather, sort_by)

        callback = None
        if on_refresh is not None:
            def callback(rows):
                return on_refresh(select([Place.from_dict(row) for row in rows]))

        merged = await self._merged_places(lat, lng, radius_meters, category, token, on_refresh=callback)
        return select(merged)

    async def discover_latest(self, purpose: str, lat: float, lng: float, radius_meters: float,
                              category: Optional[str] = None, **kwargs: Any) -> List[Place]:
        """Like ``discover_places``, cancelling any earlier request for ``purpose``."""
        token = self.scope.begin(purpose)
        return await self.discover_places(lat, lng, radius_meters, category, token=token, **kwargs)

    async def random_places(self, lat: float, lng: float, radius_meters: float, category: Optional[str] = None,
                            count: int = 10, token: Optional[CancellationToken] = None,
                            weather: Optional[Mapping[str, Any]] = None) -> List[Place]:
        """A weighted random pick that favours places not shown recently."""
        merged = await self._merged_places(lat, lng, radius_meters, category, token)
        merged = self._with_distance(merged, lat, lng)
        selection = self.config.selection_config
        return get_random_quality_places(
            merged,
            count=count,
            recent=self.recent,
            min_score=selection.min_score,
            categories=[category] if category else None,
            weather=weather,
        )

    async def fetch_place_by_id(self, place_id: str, token: Optional[CancellationToken] = None) -> Optional[Place]:
        """Resolve one place id from any source.

        ``otm_`` ids go through the curated details endpoint, OSM ids through
        an id query on the bulk source. Notable (``wiki_``) ids cannot be
        looked up and return None.
        """
        place_id = str(place_id)
        if place_id.startswith('wiki_'):
            return None

        if place_id.startswith('otm_'):
            xid = place_id[len('otm_'):]
            details = await self.opentripmap.fetch_details(xid, token=token)
            if not details or details.get('lat') is None or details.get('lng') is None:
                return None
            return Place(
                id=place_id,
                name=details.get('name') or '',
                lat=float(details['lat']),
                lng=float(details['lng']),
                type=map_otm_kind(details.get('kinds')),
                source='opentripmap',
                address=details.get('address'),
                website=details.get('website'),
                description=details.get('description'),
                image=details.get('image'),
                wikipedia=details.get('wikipedia'),
                wikidata=details.get('wikidata'),
                rating=details.get('rating'),
                tags={'xid': xid},
            )

        return await self.overpass.fetch_by_id(place_id, token=token)

    async def enrich_place(self, place: Place, token: Optional[CancellationToken] = None) -> Place:
        """Fill in description, address, website and the best image for one place.

        OpenTripMap details (only for a place with an xid and no description),
        the Wikipedia summary and the Wikidata image are looked up
        concurrently. A failed lookup contributes nothing. Details win over
        existing values; the summary only fills a description still missing.

        Returns:
            A new ``Place`` with ``needs_enrichment`` cleared

        Raises:
            RequestCancelledError: If ``token`` fired
        """
        if token is not None:
            token.raise_if_cancelled()

        xid = place.tags.get('xid')
        if not xid and place.id.startswith('otm_'):
            xid = place.id[len('otm_'):]

        lookups = {}
        if xid and not place.description:
            lookups['opentripmap'] = self.opentripmap.fetch_details(xid, token=token)
        if place.wikipedia:
            lookups['wikipedia'] = self.wikipedia.fetch_summary(place.wikipedia, token=token)
        if place.wikidata:
            lookups['wikidata'] = self.wikidata.fetch_image(place.wikidata, token=token)

        found: Dict[str, Any] = {}
        for name, outcome in zip(lookups, await settle_all(*lookups.values())):
            if isinstance(outcome, Exception):
                self.logger.warning(f"{name} enrichment failed for {place.id}: {outcome}")
                continue
            found[name] = outcome

        changes: Dict[str, Any] = {'needs_enrichment': False}
        description = place.description
        candidates: List[ImageCandidate] = []

        details = found.get('opentripmap')
        if details:
            description = details.get('description') or description
            changes['address'] = details.get('address') or place.address
            changes['website'] = details.get('website') or place.website
            if details.get('image'):
                candidates.append(ImageCandidate(details['image'], 'opentripmap'))

        summary = found.get('wikipedia')
        if summary:
            if not description:
                description = summary.get('extract_short')
            changes['wikipedia_url'] = summary.get('url') or place.wikipedia_url
            if summary.get('image'):
                candidates.append(ImageCandidate(summary['image'], 'wikipedia',
                                                 summary.get('image_width'), summary.get('image_height')))

        if found.get('wikidata'):
            candidates.append(ImageCandidate(found['wikidata'], 'wikidata'))

        best = select_best_image(candidates)
        if best is not None:
            changes['image'] = best.url
            changes['image_source'] = best.source

        changes['description'] = description
        return replace(place, **changes)

    async def enrich_places(self, places: List[Place], token: Optional[CancellationToken] = None) -> List[Place]:
        """Enrich every place flagged ``needs_enrichment``; the rest pass through.

        A place whose enrichment failed keeps its original record.
        """
        indexes = [i for i, place in enumerate(places) if place.needs_enrichment]
        outcomes = await settle_all(*(self.enrich_place(places[i], token) for i in indexes))

        enriched = list(places)
        for i, outcome in zip(indexes, outcomes):
            if isinstance(outcome, Exception):
                self.logger.warning(f"Enrichment failed for {places[i].id}: {outcome}")
                continue
            enriched[i] = outcome
        return enriched

    def status(self) -> Dict[str, Any]:
        """Debug snapshot of breakers, cache, telemetry and endpoint ranking."""
        return {
            'circuits': self.gate.status(),
            'cache': self.cache.stats(),
            'telemetry': self.telemetry.stats(),
            'endpoints': self.ranker.snapshot(),
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _merged_places(self, lat, lng, radius, category, token, on_refresh=None) -> List[Place]:
        cache_config = self.config.cache_config
        key = make_cache_key(lat, lng, radius, category, precision=cache_config.geo_precision)

        try:
            result = await self.cache.get_with_revalidate(
                key,
                lambda: self._fetch_merged(lat, lng, radius, category, token),
                ttl=cache_config.ttl,
                on_refresh=on_refresh,
            )
        except AllSourcesFailedError as e:
            self.logger.warning(f"No places found at {lat}, {lng} ({radius}m): {e}")
            return []

        if result.is_stale:
            self.logger.debug(f"Serving stale places for {key}")
        return [Place.from_dict(row) for row in result.data]

    async def _fetch_merged(self, lat, lng, radius, category, token) -> List[Dict[str, Any]]:
        if token is not None:
            token.raise_if_cancelled()

        fetchers = {}
        if self.overpass.enabled:
            fetchers['overpass'] = self._fetch_bulk(lat, lng, radius, category, token)
        if self.opentripmap.enabled:
            fetchers['opentripmap'] = self.opentripmap.fetch(lat, lng, radius, category, token)
        if self.wikipedia.enabled:
            fetchers['wikipedia'] = self.wikipedia.fetch(lat, lng, radius, category, token)

        outcomes = dict(zip(fetchers, await settle_all(*fetchers.values())))

        results: Dict[str, List[Place]] = {}
        errors: Dict[str, BaseException] = {}
        for name, outcome in outcomes.items():
            if isinstance(outcome, Exception):
                self.logger.warning(f"{name} fetch failed: {outcome}")
                errors[name] = outcome
            else:
                results[name] = outcome

        if fetchers and len(errors) == len(fetchers):
            raise AllSourcesFailedError(errors)

        osm = results.get('overpass', [])
        otm = results.get('opentripmap', [])
        wiki = results.get('wikipedia', [])
        self.logger.info(f"Sources: OSM={len(osm)}, OTM={len(otm)}, Wiki={len(wiki)}")

        merged = merge_places(osm, otm, wiki)
        return [place.to_dict() for place in merged]

    async def _fetch_bulk(self, lat, lng, radius, category, token) -> List[Place]:
        tiling = self.config.tiling_config
        tiles = plan_tiles(lat, lng, radius, tiling.tile_size)
        if len(tiles) == 1:
            return await self.overpass.fetch(lat, lng, radius, category, token)
        return await fetch_tiled(
            tiles,
            lambda tile: self.overpass.fetch(tile.lat, tile.lng, tile.radius, category, token),
            max_concurrent=tiling.max_concurrent_tiles,
            token=token,
        )

    @staticmethod
    def _with_distance(places: List[Place], lat: float, lng: float) -> List[Place]:
        return [replace(p, distance=haversine_meters(lat, lng, p.lat, p.lng)) for p in places]

    def _select(self, places, lat, lng, category, count, weather, sort_by) -> List[Place]:
        selection = self.config.selection_config
        return filter_places(
            self._with_distance(places, lat, lng),
            min_score=selection.min_score,
            categories=[category] if category else None,
            max_results=count or selection.max_results,
            sort_by=sort_by,
            weather=weather,
        )


_discovery: Optional[PlaceDiscovery] = None


def get_discovery() -> PlaceDiscovery:
    """Get the process-wide discovery pipeline, built on first use."""
    global _discovery
    if _discovery is None:
        _discovery = PlaceDiscovery()
    return _discovery


async def discover_places(lat: float, lng: float, radius_meters: float, category: Optional[str] = None,
                          token: Optional[CancellationToken] = None, **kwargs: Any) -> List[Place]:
    """Discover places with the process-wide pipeline. See ``PlaceDiscovery.discover_places``."""
    return await get_discovery().discover_places(lat, lng, radius_meters, category, token, **kwargs)
