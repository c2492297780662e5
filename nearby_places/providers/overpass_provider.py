"""
OpenStreetMap places via the Overpass API.

Queries use a bounding box rather than ``around`` (much faster on the
Overpass side) and group place types under their OSM keys so one regex
clause covers many types. Endpoints are interchangeable mirrors tried
fastest-first; any failure falls through to the next one.
"""

import math
import re
import time
from typing import Any, Dict, List, NamedTuple, Optional

from nearby_places.models import Place
from nearby_places.providers.base import AllEndpointsFailedError, PlaceSource
from nearby_places.providers.osm_tags import count_query_clauses, group_types_by_key
from nearby_places.providers.utils import http_post
from nearby_places.services.geo_cache import make_key
from nearby_places.services.telemetry import EndpointRanker
from nearby_places.src.categories import GOOD_CATEGORIES, get_all_good_types, get_types_for_category
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError

METERS_PER_DEGREE = 111320
LARGE_RADIUS = 15000
MAX_TYPES = 35
MAX_TYPES_LARGE = 20

# Types that usually carry a name worth showing; searched first on big areas
PRIORITY_TYPES = [
    'attraction', 'museum', 'castle', 'ruins', 'monument', 'viewpoint', 'park', 'nature_reserve',
    'restaurant', 'pub', 'cafe', 'cinema', 'theatre', 'artwork', 'memorial', 'beach', 'waterfall',
]

# First tag present wins
TYPE_TAG_ORDER = ('amenity', 'tourism', 'leisure', 'historic', 'shop', 'natural', 'man_made', 'landuse')

EXTRA_TAGS = (
    'cuisine', 'wheelchair', 'outdoor_seating', 'takeaway', 'delivery',
    'heritage', 'designation', 'tourism', 'brand', 'fee',
)

OSM_ID_RE = re.compile(r'^(?:osm_(node|way|relation)_)?(\d+)$')

_REGEX_SPECIALS = re.compile(r'([\\.^$|?*+()\[\]{}])')


class OverpassQuery(NamedTuple):
    query: str
    clause_count: int
    timeout: int

    @property
    def query_size(self) -> int:
        return len(self.query)


def escape_overpass_regex(value: str) -> str:
    return _REGEX_SPECIALS.sub(r'\\\1', value)


def radius_to_bbox(lat: float, lng: float, radius: float) -> Dict[str, float]:
    lat_delta = radius / METERS_PER_DEGREE
    lng_delta = radius / (METERS_PER_DEGREE * math.cos(math.radians(lat)))
    return {
        'south': lat - lat_delta,
        'north': lat + lat_delta,
        'west': lng - lng_delta,
        'east': lng + lng_delta,
    }


def query_timeout(radius: float) -> int:
    """Server-side timeout in seconds, scaled with the search area."""
    if radius > 30000:
        return 90
    if radius > 10000:
        return 60
    return 30


def build_overpass_query(lat: float, lng: float, radius: float, types: List[str]) -> OverpassQuery:
    """Build an Overpass QL query for the given place types.

    Above 50 km only named features are requested, otherwise the result set
    explodes with anonymous benches and paths.

    Args:
        lat: Center latitude
        lng: Center longitude
        radius: Search radius in meters
        types: Place types to include

    Returns:
        OverpassQuery with the query text, clause count and timeout
    """
    timeout = query_timeout(radius)
    name_filter = '["name"]' if radius > 50000 else ''

    unique_types = list(dict.fromkeys(t for t in types if t))
    if not unique_types:
        return OverpassQuery(f"[out:json][timeout:{timeout}];();out center;", 0, timeout)

    bbox = radius_to_bbox(lat, lng, radius)
    bbox_str = f"({bbox['south']},{bbox['west']},{bbox['north']},{bbox['east']})"

    filters = []
    for key, key_types in group_types_by_key(unique_types).items():
        regex = '|'.join(escape_overpass_regex(t) for t in key_types)
        filters.append(f'nw["{key}"~"^({regex})$"]{name_filter}{bbox_str};')
    type_filters = '\n      '.join(filters)

    query = (
        f"[out:json][timeout:{timeout}][bbox:{bbox['south']},{bbox['west']},{bbox['north']},{bbox['east']}];\n"
        f"    (\n"
        f"      {type_filters}\n"
        f"    );\n"
        f"    out center;"
    )
    return OverpassQuery(query, count_query_clauses(unique_types), timeout)


def select_types(category: Optional[str], radius: float) -> List[str]:
    """Pick the capped type list to query.

    Without a category the types are taken round-robin across categories so
    the cap cuts evenly instead of keeping only the first categories.
    """
    if category:
        types = get_types_for_category(category)
    else:
        per_category = [get_types_for_category(key) for key in GOOD_CATEGORIES]
        types = []
        for i in range(max(len(t) for t in per_category)):
            for category_types in per_category:
                if i < len(category_types):
                    types.append(category_types[i])
        if not types:
            types = get_all_good_types()

    types = list(dict.fromkeys(types))

    if radius > LARGE_RADIUS:
        priority = [t for t in types if t in PRIORITY_TYPES]
        others = [t for t in types if t not in PRIORITY_TYPES]
        return (priority + others)[:MAX_TYPES_LARGE]
    return types[:MAX_TYPES]


def calculate_place_quality(tags: Dict[str, str]) -> int:
    """Heuristic 0-100 quality from OSM tag completeness and notability."""
    score = 40

    name = tags.get('name')
    if name and len(name) > 3:
        score += 5

    if tags.get('phone') or tags.get('contact:phone'):
        score += 5
    if tags.get('website') or tags.get('contact:website'):
        score += 5
    if tags.get('opening_hours'):
        score += 5
    if tags.get('description'):
        score += 10

    if tags.get('wikipedia'):
        score += 15
    if tags.get('wikidata'):
        score += 10

    if tags.get('heritage') or tags.get('listed_status') or tags.get('HE_ref'):
        score += 15

    # chains and tourist traps
    if tags.get('brand'):
        score -= 20
    if tags.get('tourism') == 'attraction':
        score -= 10
    if tags.get('tourism') == 'theme_park':
        score -= 15

    # independents
    if tags.get('craft'):
        score += 10
    if tags.get('addr:country') == 'GB' and not tags.get('brand'):
        score += 5
    if tags.get('cuisine') and not tags.get('brand'):
        score += 5

    return max(0, min(100, score))


def format_address(tags: Dict[str, str]) -> Optional[str]:
    parts = [
        tags.get('addr:housenumber'),
        tags.get('addr:street'),
        tags.get('addr:city'),
        tags.get('addr:postcode'),
    ]
    parts = [p for p in parts if p]
    return ', '.join(parts) if parts else None


def parse_overpass_response(data: Any) -> List[Place]:
    """Map Overpass elements to places, dropping unnamed or unlocated ones."""
    if not isinstance(data, dict):
        return []

    places = []
    for element in data.get('elements') or []:
        tags = element.get('tags') or {}
        center = element.get('center') or {}
        lat = element.get('lat', center.get('lat'))
        lng = element.get('lon', center.get('lon'))
        name = tags.get('name') or tags.get('name:en')
        if lat is None or lng is None or not name:
            continue

        place_type = next((tags[key] for key in TYPE_TAG_ORDER if tags.get(key)), 'place')

        extra = {key: tags[key] for key in EXTRA_TAGS if tags.get(key)}
        listed = tags.get('listed_status') or tags.get('HE_ref')
        if listed:
            extra['listed_status'] = listed

        places.append(Place(
            id=f"osm_{element.get('type', 'node')}_{element['id']}",
            name=name,
            lat=float(lat),
            lng=float(lng),
            type=place_type,
            source='overpass',
            address=format_address(tags),
            phone=tags.get('phone') or tags.get('contact:phone'),
            website=tags.get('website') or tags.get('contact:website'),
            opening_hours=tags.get('opening_hours'),
            description=tags.get('description') or tags.get('description:en'),
            wikipedia=tags.get('wikipedia'),
            wikidata=tags.get('wikidata'),
            quality_score=calculate_place_quality(tags),
            tags=extra,
        ))
    return places


def _element_count(data: Any) -> int:
    if isinstance(data, dict):
        return len(data.get('elements') or [])
    return 0


class OverpassProvider(PlaceSource):
    """Bulk place source backed by a ranked list of Overpass mirrors."""

    name = 'overpass'

    def __init__(self, gate, telemetry, session=None, endpoints: Optional[List[str]] = None,
                 ranker: Optional[EndpointRanker] = None, ttl: float = 600.0,
                 timeout_slack: float = 10.0, user_agent: Optional[str] = None):
        super().__init__(gate, telemetry, session)
        if not endpoints:
            from nearby_places.config import DEFAULT_OVERPASS_URLS
            endpoints = list(DEFAULT_OVERPASS_URLS)
        self.endpoints = list(endpoints)
        self.ranker = ranker or EndpointRanker()
        self.ttl = ttl
        self.timeout_slack = timeout_slack
        self.headers = {'User-Agent': user_agent} if user_agent else None

    async def fetch(self, lat: float, lng: float, radius: float, category: Optional[str] = None,
                    token: Optional[CancellationToken] = None) -> List[Place]:
        key = make_key('overpass', lat, lng, radius, category)

        async def operation():
            types = select_types(category, radius)
            built = build_overpass_query(lat, lng, radius, types)
            data = await self.run_query(built)
            return [p.to_dict() for p in parse_overpass_response(data)]

        rows = await self.gate.managed_call(self.name, key, operation, ttl=self.ttl, token=token)
        return self._rows_to_places(rows)

    async def run_query(self, built: OverpassQuery, token: Optional[CancellationToken] = None) -> Any:
        """POST a query to each endpoint in rank order until one answers.

        Raises:
            RequestCancelledError: If ``token`` fired
            AllEndpointsFailedError: If every endpoint failed
        """
        timeout = built.timeout + self.timeout_slack
        errors = {}

        for endpoint in self.ranker.rank(self.endpoints):
            start = time.monotonic()
            try:
                data = await self._timed(
                    endpoint,
                    lambda url=endpoint: http_post(url, self.name, data={'data': built.query},
                                                   headers=self.headers, timeout=timeout, session=self.session),
                    token,
                    count_results=_element_count,
                    query_size=built.query_size,
                    clause_count=built.clause_count,
                )
            except RequestCancelledError:
                raise
            except Exception as e:
                self.ranker.record(endpoint, False, (time.monotonic() - start) * 1000)
                self.logger.warning(f"Overpass endpoint failed: {endpoint}: {e}")
                errors[endpoint] = str(e)
                continue

            self.ranker.record(endpoint, True, (time.monotonic() - start) * 1000)
            return data

        raise AllEndpointsFailedError('All Overpass endpoints failed', self.name, {'errors': errors})

    async def fetch_by_id(self, place_id: str, token: Optional[CancellationToken] = None) -> Optional[Place]:
        """Look up one OSM element by ``osm_{type}_{id}`` or a bare numeric id."""
        match = OSM_ID_RE.match(str(place_id))
        if not match:
            return None
        osm_type, osm_id = match.groups()
        if osm_type:
            selectors = f"{osm_type}({osm_id});"
        else:
            selectors = f"node({osm_id});\n        way({osm_id});"
        built = OverpassQuery(
            f"[out:json][timeout:10];\n      (\n        {selectors}\n      );\n      out body center;",
            0,
            10,
        )

        async def operation():
            data = await self.run_query(built)
            return [p.to_dict() for p in parse_overpass_response(data)]

        try:
            rows = await self.gate.managed_call(self.name, make_key('overpass_id', str(place_id)), operation,
                                                ttl=self.ttl, token=token)
        except RequestCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Failed to fetch place by id {place_id}: {e}")
            return None

        if not rows:
            return None
        return Place.from_dict(rows[0])
