"""
Place images from Wikidata.

Reads the P18 (image) claim of an entity and turns the Commons filename into
a direct upload.wikimedia.org URL.
"""

import hashlib
import re
from typing import Any, Optional
from urllib.parse import quote

from nearby_places.providers.base import Provider, ProviderError
from nearby_places.providers.utils import http_get
from nearby_places.services.geo_cache import make_key
from nearby_places.utils.async_utils import CancellationToken, RequestCancelledError

QID_RE = re.compile(r'^Q\d+$')
COMMONS_UPLOAD_URL = 'https://upload.wikimedia.org/wikipedia/commons'


def commons_image_url(filename: str) -> str:
    """Direct URL of a Commons file; the path is derived from the md5 of its name."""
    name = filename.replace(' ', '_')
    digest = hashlib.md5(name.encode('utf-8')).hexdigest()
    return f"{COMMONS_UPLOAD_URL}/{digest[0]}/{digest[:2]}/{quote(name)}"


def parse_entity_image(data: Any, qid: str) -> Optional[str]:
    try:
        filename = data['entities'][qid]['claims']['P18'][0]['mainsnak']['datavalue']['value']
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(filename, str) or not filename:
        return None
    return commons_image_url(filename)


class WikidataImageProvider(Provider):
    """Image lookup through ``Special:EntityData``."""

    name = 'wikidata'

    def __init__(self, gate, telemetry, session=None,
                 base_url: str = 'https://www.wikidata.org/wiki/Special:EntityData',
                 timeout: float = 10.0, ttl: float = 86400.0, user_agent: Optional[str] = None):
        super().__init__(gate, telemetry, session)
        self.base_url = base_url
        self.timeout = timeout
        self.ttl = ttl
        self.headers = {'User-Agent': user_agent} if user_agent else None

    async def fetch_image(self, qid: str, token: Optional[CancellationToken] = None) -> Optional[str]:
        """Image URL for a Wikidata entity, or None when it has none or the lookup failed."""
        qid = (qid or '').strip().upper()
        if not QID_RE.match(qid):
            return None

        url = f"{self.base_url}/{qid}.json"

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
            return parse_entity_image(data, qid)

        try:
            return await self.gate.managed_call(self.name, make_key('wikidata_image', qid), operation,
                                                ttl=self.ttl, token=token)
        except RequestCancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Wikidata image lookup failed for {qid}: {e}")
            return None
