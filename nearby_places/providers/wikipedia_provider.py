"""
Notable places from Wikipedia geosearch.

Free, keyless, and capped at a 10 km search radius. Larger searches sample
the center and the four cardinal points at 60% of the radius. The REST
summary endpoint supplies descriptions and images for single places.
"""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from nearby_places.models import Place
from nearby_places.providers.base import PlaceSource, ProviderError
from nearby_places.providers.utils import http_get
from nearby_places.services.geo_cache import make_key
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError, settle_all

MAX_SEARCH_RADIUS = 10000
SAMPLING_RADIUS = 15000
METERS_PER_DEGREE = 111320
SHORT_EXTRACT_LENGTH = 150


def sample_points(lat: float, lng: float, radius: float) -> List[Tuple[float, float, float]]:
    """Search points as ``(lat, lng, search_radius)`` triples."""
    if radius <= SAMPLING_RADIUS:
        return [(lat, lng, min(radius, MAX_SEARCH_RADIUS))]
    # same degree offset on both axes
    offset = radius * 0.6 / METERS_PER_DEGREE
    return [
        (lat, lng, MAX_SEARCH_RADIUS),
        (lat + offset, lng, MAX_SEARCH_RADIUS),
        (lat - offset, lng, MAX_SEARCH_RADIUS),
        (lat, lng + offset, MAX_SEARCH_RADIUS),
        (lat, lng - offset, MAX_SEARCH_RADIUS),
    ]


def parse_geosearch(data: Any) -> List[Place]:
    if not isinstance(data, dict):
        return []
    results = (data.get('query') or {}).get('geosearch') or []
    places = []
    for item in results:
        title = item.get('title')
        if not title or item.get('lat') is None or item.get('lon') is None:
            continue
        places.append(Place(
            id=f"wiki_{item.get('pageid')}",
            name=title,
            lat=float(item['lat']),
            lng=float(item['lon']),
            type='notable_place',
            source='wikipedia',
            distance=item.get('dist'),
            wikipedia=f"en:{title}",
            tags={'pageid': str(item.get('pageid'))},
        ))
    return places


def split_wikipedia_ref(ref: str) -> Tuple[str, str]:
    """Split an OSM-style "lang:Title" reference. Bare titles are English."""
    lang, sep, title = ref.partition(':')
    if sep and len(lang) == 2 and lang.isalpha():
        return lang.lower(), title
    return 'en', ref


def truncate_text(text: str, max_length: int = SHORT_EXTRACT_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    cut = text[:max_length]
    last_space = cut.rfind(' ')
    return (cut[:last_space] if last_space > 0 else cut) + '...'


def parse_summary(data: Any) -> Optional[Dict[str, Any]]:
    """Pick the fields used for enrichment out of a REST page summary."""
    if not isinstance(data, dict):
        return None
    image = data.get('thumbnail') or data.get('originalimage') or {}
    extract = data.get('extract') or None
    return {
        'title': data.get('title'),
        'extract': extract,
        'extract_short': truncate_text(extract) if extract else None,
        'image': image.get('source'),
        'image_width': image.get('width'),
        'image_height': image.get('height'),
        'url': ((data.get('content_urls') or {}).get('desktop') or {}).get('page'),
    }


def _result_count(data: Any) -> int:
    if not isinstance(data, dict):
        return 0
    return len((data.get('query') or {}).get('geosearch') or [])


class WikipediaGeosearchProvider(PlaceSource):
    """Notable place source (Wikipedia ``list=geosearch``)."""

    name = 'wikipedia'

    def __init__(self, gate, telemetry, session=None, api_url: str = 'https://en.wikipedia.org/w/api.php',
                 timeout: float = 10.0, ttl: float = 900.0, user_agent: Optional[str] = None,
                 rest_url: str = 'https://{lang}.wikipedia.org/api/rest_v1', summary_ttl: float = 86400.0):
        super().__init__(gate, telemetry, session)
        self.api_url = api_url
        self.rest_url = rest_url
        self.summary_ttl = summary_ttl
        self.timeout = timeout
        self.ttl = ttl
        self.headers = {'User-Agent': user_agent} if user_agent else None

    async def fetch(self, lat: float, lng: float, radius: float, category: Optional[str] = None,
                    token: Optional[CancellationToken] = None) -> List[Place]:
        points = sample_points(lat, lng, radius)
        if len(points) == 1:
            return await self.geosearch(*points[0], token=token)

        outcomes = await settle_all(*(self.geosearch(p_lat, p_lng, r, token=token) for p_lat, p_lng, r in points))
        errors = [o for o in outcomes if isinstance(o, Exception)]
        if len(errors) == len(outcomes):
            raise errors[0]
        for error in errors:
            self.logger.debug(f"Wikipedia sample point failed: {error}")

        merged: Dict[str, Place] = {}
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                continue
            for place in outcome:
                merged.setdefault(place.id, place)
        return list(merged.values())

    async def geosearch(self, lat: float, lng: float, radius: float,
                        token: Optional[CancellationToken] = None) -> List[Place]:
        search_radius = int(min(radius, MAX_SEARCH_RADIUS))
        key = make_key('wiki_geo', lat, lng, search_radius)

        async def operation():
            params = {
                'action': 'query',
                'list': 'geosearch',
                'gscoord': f"{lat}|{lng}",
                'gsradius': search_radius,
                'gslimit': 50,
                'format': 'json',
            }
            data = await self._timed(
                self.api_url,
                lambda: http_get(self.api_url, self.name, params=params, headers=self.headers,
                                 timeout=self.timeout, session=self.session),
                count_results=_result_count,
            )
            return [p.to_dict() for p in parse_geosearch(data)]

        rows = await self.gate.managed_call(self.name, key, operation, ttl=self.ttl, token=token)
        return self._rows_to_places(rows)

    async def fetch_summary(self, ref: str, token: Optional[CancellationToken] = None) -> Optional[Dict[str, Any]]:
        """Fetch the REST page summary for a Wikipedia reference.

        Args:
            ref: Article title, optionally prefixed with a language ("de:Brandenburger Tor")
            token: Optional cancellation token

        Returns:
            Dict with title, extract, extract_short, image, image_width,
            image_height and url; None when the article is missing, the
            circuit is open or the lookup failed
        """
        lang, title = split_wikipedia_ref(ref)
        url = f"{self.rest_url.format(lang=lang)}/page/summary/{quote(title.replace(' ', '_'), safe='')}"

        async def operation():
            try:
                data = await self._timed(
                    url,
                    lambda: http_get(url, self.name, headers=self.headers, timeout=self.timeout,
                                     session=self.session),
                    count_results=lambda d: 1 if d else 0,
                )
            except ProviderError as e:
                if e.status == 404:
                    return None
                raise
            return parse_summary(data)

        try:
            return await self.gate.managed_call(self.name, make_key('wiki_summary', lang, title), operation,
                                                ttl=self.summary_ttl, token=token)
        except RequestCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Wikipedia summary failed for {ref}: {e}")
            return None
