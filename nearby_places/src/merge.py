"""
Cross-source merge and deduplication.

Bulk OSM results are trusted and seeded first. Curated and notable records
are added only when no place with the same normalized name exists, and no
place in the same ~11m coordinate bucket has a name containing theirs (or
contained in theirs). A notable record dropped that way lends its
Wikipedia reference to a nearby place that lacks one.
"""

import logging
import re
from dataclasses import replace
from typing import Dict, List, Set

from nearby_places.models import Place

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r'[a-z0-9]+')
_ARTICLES = {'the'}


def location_key(place: Place) -> str:
    return f"{place.lat:.4f},{place.lng:.4f}"


def normalize_name(name: str) -> str:
    """Lowercase alphanumerics only, with a leading or trailing "the" dropped.

    "The Crown Inn" and "Crown Inn, The" both become "crowninn".
    """
    words = _WORD_RE.findall((name or '').lower())
    trimmed = list(words)
    if trimmed and trimmed[0] in _ARTICLES:
        trimmed = trimmed[1:]
    if trimmed and trimmed[-1] in _ARTICLES:
        trimmed = trimmed[:-1]
    return ''.join(trimmed or words)


def _names_overlap(a: str, b: str) -> bool:
    return a in b or b in a


def merge_places(primary: List[Place], curated: List[Place], notable: List[Place]) -> List[Place]:
    """Merge the three source lists into one list with no duplicate places.

    Args:
        primary: Bulk (OSM) places, kept as is and tagged ``osm``
        curated: Curated attraction places
        notable: Notable (Wikipedia) places

    Returns:
        New list of places; inputs are never mutated
    """
    by_location: Dict[str, List[Place]] = {}
    seen_names: Set[str] = set()
    merged: List[Place] = []

    def add(place: Place) -> None:
        by_location.setdefault(location_key(place), []).append(place)
        seen_names.add(normalize_name(place.name))
        merged.append(place)

    for place in primary:
        add(replace(place, source='osm', tags=dict(place.tags)))

    for place in curated:
        norm = normalize_name(place.name)
        if norm in seen_names:
            continue
        nearby = by_location.get(location_key(place), [])
        if any(_names_overlap(normalize_name(p.name), norm) for p in nearby):
            continue
        add(replace(place, needs_enrichment=True, tags=dict(place.tags)))

    for place in notable:
        norm = normalize_name(place.name)
        if norm in seen_names:
            continue
        nearby = by_location.get(location_key(place), [])
        similar = [p for p in nearby if _names_overlap(normalize_name(p.name), norm)]
        if similar:
            target = next((p for p in similar if not p.wikipedia), None)
            if target is not None and place.wikipedia:
                target.wikipedia = place.wikipedia
            continue
        add(replace(place, needs_enrichment=True, tags=dict(place.tags)))

    logger.debug(
        f"Merged {len(primary)} primary, {len(curated)} curated, {len(notable)} notable into {len(merged)} places"
    )
    return merged
