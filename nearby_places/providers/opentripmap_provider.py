"""
Curated tourist attractions from OpenTripMap.

Requires ``OPENTRIPMAP_API_KEY``; without it the source quietly contributes
nothing. Free tier allows 5000 requests/day.
"""

import re
from typing import Any, Dict, List, Optional

from nearby_places.models import Place
from nearby_places.providers.base import PlaceSource
from nearby_places.providers.utils import http_get
from nearby_places.services.geo_cache import make_key
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError

# OpenTripMap kinds to category keys; None means skip (accommodation)
OTM_KIND_MAPPING: Dict[str, Optional[str]] = {
    # Nature
    'natural': 'nature',
    'beaches': 'nature',
    'gardens_and_parks': 'nature',
    'nature_reserves': 'nature',
    'geological_formations': 'nature',
    'water': 'nature',
    # Culture
    'museums': 'culture',
    'theatres_and_entertainments': 'culture',
    'cultural': 'culture',
    'art_galleries': 'culture',
    # Historic
    'historic': 'historic',
    'architecture': 'historic',
    'historic_architecture': 'historic',
    'castles': 'historic',
    'churches': 'historic',
    'monuments_and_memorials': 'historic',
    'archaeological': 'historic',
    # Food
    'foods': 'food',
    'restaurants': 'food',
    'cafes': 'food',
    'pubs': 'food',
    # Entertainment, sport, shopping
    'amusements': 'entertainment',
    'sport': 'active',
    'accomodations': None,
    'shops': 'shopping',
    'marketplaces': 'shopping',
    # Unique
    'interesting_places': 'unique',
    'view_points': 'unique',
    'lighthouses': 'unique',
}

MIN_RADIUS = 100
MAX_RADIUS = 50000


def map_otm_kind(kinds: Optional[str]) -> str:
    """Map a comma separated OTM kinds string to a category key."""
    if not kinds:
        return 'unique'
    for kind in kinds.split(','):
        mapped = OTM_KIND_MAPPING.get(kind.strip())
        if mapped:
            return mapped

    if 'historic' in kinds:
        return 'historic'
    if 'museum' in kinds:
        return 'culture'
    if 'natural' in kinds or 'park' in kinds:
        return 'nature'
    if 'restaurant' in kinds or 'food' in kinds:
        return 'food'
    return 'unique'


def kinds_for_category(category: Optional[str]) -> Optional[str]:
    """Inverse of OTM_KIND_MAPPING: the kinds filter for a category, if any."""
    if not category:
        return None
    kinds = [kind for kind, mapped in OTM_KIND_MAPPING.items() if mapped == category]
    return ','.join(kinds) if kinds else None


def parse_rate(value: Any) -> Optional[float]:
    # rate is an int in json output but "3h" style strings in geojson
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        match = re.match(r'\d+', value)
        if match:
            return float(match.group())
    return None


def format_otm_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    parts = [
        address.get('house_number'),
        address.get('road'),
        address.get('city') or address.get('town') or address.get('village'),
        address.get('postcode'),
    ]
    parts = [p for p in parts if p]
    return ', '.join(parts) if parts else None


def parse_otm_places(data: Any) -> List[Place]:
    if not isinstance(data, list):
        return []
    places = []
    for item in data:
        point = item.get('point') or {}
        name = item.get('name')
        lat = point.get('lat')
        lng = point.get('lon')
        if not name or lat is None or lng is None:
            continue
        places.append(Place(
            id=f"otm_{item.get('xid')}",
            name=name,
            lat=float(lat),
            lng=float(lng),
            type=map_otm_kind(item.get('kinds')),
            source='opentripmap',
            rating=parse_rate(item.get('rate')),
            tags={'xid': str(item.get('xid')), 'kinds': item.get('kinds') or ''},
        ))
    return places


def parse_otm_details(data: Dict[str, Any]) -> Dict[str, Any]:
    extracts = data.get('wikipedia_extracts') or {}
    info = data.get('info') or {}
    preview = data.get('preview') or {}
    point = data.get('point') or {}
    return {
        'name': data.get('name'),
        'lat': point.get('lat'),
        'lng': point.get('lon'),
        'description': extracts.get('text') or info.get('descr') or None,
        'image': preview.get('source') or data.get('image') or None,
        'wikipedia': data.get('wikipedia') or None,
        'wikidata': data.get('wikidata') or None,
        'address': format_otm_address(data.get('address')),
        'website': data.get('url') or None,
        'kinds': data.get('kinds'),
        'rating': parse_rate(data.get('rate')),
    }


class OpenTripMapProvider(PlaceSource):
    """Curated attraction source (OpenTripMap radius search)."""

    name = 'opentripmap'

    def __init__(self, gate, telemetry, session=None, api_key: Optional[str] = None,
                 base_url: str = 'https://api.opentripmap.com/0.1', timeout: float = 15.0,
                 ttl: float = 600.0, detail_ttl: float = 1800.0):
        super().__init__(gate, telemetry, session)
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.ttl = ttl
        self.detail_ttl = detail_ttl

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def fetch(self, lat: float, lng: float, radius: float, category: Optional[str] = None,
                    token: Optional[CancellationToken] = None) -> List[Place]:
        if not self.api_key:
            return []

        radius = int(max(MIN_RADIUS, min(MAX_RADIUS, radius)))
        kinds = kinds_for_category(category)
        key = make_key('otm', lat, lng, radius, kinds)

        async def operation():
            url = f"{self.base_url}/en/places/radius"
            params = {
                'lat': lat,
                'lon': lng,
                'radius': radius,
                'limit': 100,
                'rate': 2,
                'apikey': self.api_key,
            }
            if kinds:
                params['kinds'] = kinds
            data = await self._timed(
                url,
                lambda: http_get(url, self.name, params=params, timeout=self.timeout, session=self.session),
                count_results=lambda d: len(d) if isinstance(d, list) else 0,
            )
            return [p.to_dict() for p in parse_otm_places(data)]

        rows = await self.gate.managed_call(self.name, key, operation, ttl=self.ttl, token=token)
        return self._rows_to_places(rows)

    async def fetch_details(self, xid: str, token: Optional[CancellationToken] = None) -> Optional[Dict[str, Any]]:
        """Fetch the detail record for one attraction.

        Args:
            xid: OpenTripMap place id
            token: Optional cancellation token

        Returns:
            Dict with name, lat, lng, description, image, wikipedia, wikidata, address,
            website, kinds and rating; None without a key, with the circuit
            open, or when the lookup failed
        """
        if not self.api_key:
            return None

        url = f"{self.base_url}/en/places/xid/{xid}"

        async def operation():
            data = await self._timed(
                url,
                lambda: http_get(url, self.name, params={'apikey': self.api_key}, timeout=self.timeout,
                                 session=self.session),
                count_results=lambda d: 1 if d else 0,
            )
            if not isinstance(data, dict):
                return None
            return parse_otm_details(data)

        try:
            return await self.gate.managed_call(self.name, make_key('otm_detail', xid), operation,
                                                ttl=self.detail_ttl, token=token)
        except RequestCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"OpenTripMap details failed for {xid}: {e}")
            return None
