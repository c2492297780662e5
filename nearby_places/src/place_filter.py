"""
Place Filter & Scorer

Context-aware quality scoring plus selection strategies that keep results
varied: category round-robin when browsing everything, a streak cap when a
category filter is active, and a recently-shown memory for repeat requests.
"""

import logging
import random
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from nearby_places.models import Place
from nearby_places.src.categories import get_category_for_type, has_boring_name, is_blacklisted

logger = logging.getLogger(__name__)

SHOWN_PLACES_MAX = 100

TIME_BOOSTS: Dict[str, Dict[str, int]] = {
    'morning': {'food': 10, 'nature': 5},
    'lunch': {'food': 15},
    'afternoon': {'culture': 10, 'historic': 10, 'shopping': 5, 'nature': 5},
    'evening': {'food': 10, 'nightlife': 15, 'entertainment': 10},
    'night': {'nightlife': 20, 'food': 5},
}

WEATHER_BOOSTS: Dict[str, Dict[str, int]] = {
    'good': {'nature': 15, 'active': 10, 'unique': 5},
    'bad': {'culture': 15, 'entertainment': 15, 'food': 10, 'shopping': 10},
}

# WMO codes: fog, drizzle, rain, snow, showers, thunderstorm
BAD_WEATHER_CODES = {45, 48, 51, 53, 55, 61, 63, 65, 71, 73, 75, 80, 81, 82, 95}

PREMIUM_TYPES = {
    'museum', 'castle', 'viewpoint', 'beach', 'botanical_garden', 'national_park',
    'abbey', 'cathedral', 'stately_home', 'manor', 'priory', 'country_park',
    'nature_reserve', 'lido', 'standing_stone', 'hill_fort', 'folly', 'lighthouse',
    'windmill', 'canal_lock', 'walled_garden', 'maze',
}

INTERESTING_NAME_WORDS = ('the ', 'old ', 'royal', 'ancient', 'historic',
                          'manor', 'hall', 'house', 'arms', 'inn', 'lodge')


def time_context(hour: Optional[int] = None) -> str:
    """Bucket an hour of the day (local time when omitted)."""
    if hour is None:
        hour = datetime.now().hour
    if 6 <= hour < 11:
        return 'morning'
    if 11 <= hour < 14:
        return 'lunch'
    if 14 <= hour < 17:
        return 'afternoon'
    if 17 <= hour < 21:
        return 'evening'
    return 'night'


def is_good_weather(weather: Optional[Mapping[str, Any]]) -> bool:
    """True unless the WMO ``weather_code`` says fog, rain, snow or storms.

    Unknown weather counts as good.
    """
    if not weather:
        return True
    code = weather.get('weather_code', weather.get('weatherCode'))
    return code not in BAD_WEATHER_CODES


@dataclass
class ScoringContext:
    time_of_day: str
    weather: Optional[Mapping[str, Any]] = None

    @classmethod
    def current(cls, weather: Optional[Mapping[str, Any]] = None,
                now: Optional[datetime] = None) -> "ScoringContext":
        return cls(time_context(now.hour if now else None), weather)


def _has_interesting_name(name: str) -> bool:
    lowered = (name or '').lower()
    return any(word in lowered for word in INTERESTING_NAME_WORDS)


def score_place(place: Place, context: Optional[ScoringContext] = None) -> int:
    """Score a place 0-100 from quality signals and context.

    Args:
        place: Place to score
        context: Time of day and weather; current time, no weather if omitted

    Returns:
        Integer score clamped to 0..100
    """
    context = context or ScoringContext.current()
    score = 0

    category = get_category_for_type(place.type)
    if category:
        score += 35

    if place.source == 'opentripmap':
        score += 12
        if place.rating is not None and place.rating >= 3:
            score += 8

    if place.image:
        score += 12
    if place.website:
        score += 6
    if place.opening_hours:
        score += 6
    if place.description and len(place.description) > 20:
        score += 8
    if place.wikipedia or place.wikidata:
        score += 10
    if place.phone or place.email:
        score += 3
    if place.address:
        score += 3

    if is_blacklisted(place.type):
        score -= 100
    if has_boring_name(place.name):
        score -= 50

    if place.type in PREMIUM_TYPES:
        score += 12
    if _has_interesting_name(place.name):
        score += 4

    if category:
        score += TIME_BOOSTS.get(context.time_of_day, {}).get(category, 0)
        if context.weather:
            weather_type = 'good' if is_good_weather(context.weather) else 'bad'
            score += WEATHER_BOOSTS[weather_type].get(category, 0)

    return max(0, min(100, score))


def shuffle_with_weight(places: List[Place], rng: Optional[random.Random] = None) -> List[Place]:
    """Order by score plus up to 30 points of jitter, best first."""
    rng = rng or random
    keyed = [((p.score or 0) + rng.random() * 30, i, p) for i, p in enumerate(places)]
    keyed.sort(key=lambda item: (-item[0], item[1]))
    return [p for _, _, p in keyed]


def select_with_diversity(places: List[Place], max_results: int,
                          rng: Optional[random.Random] = None) -> List[Place]:
    """Round-robin across categories in a shuffled category order.

    Consecutive picks share a category only once every other category has
    run out.
    """
    rng = rng or random
    by_category: Dict[str, List[Place]] = {}
    for place in places:
        by_category.setdefault(place.category or 'other', []).append(place)

    for key in by_category:
        by_category[key] = shuffle_with_weight(by_category[key], rng)

    order = list(by_category)
    rng.shuffle(order)

    selected: List[Place] = []
    index = {key: 0 for key in order}
    while len(selected) < max_results:
        progressed = False
        for key in order:
            if len(selected) >= max_results:
                break
            group = by_category[key]
            if index[key] < len(group):
                selected.append(group[index[key]])
                index[key] += 1
                progressed = True
        if not progressed:
            break

    return selected


def select_with_streak_cap(places: List[Place], max_results: int, max_streak: int = 2,
                           rng: Optional[random.Random] = None) -> List[Place]:
    """Take from a weighted shuffle, never more than ``max_streak`` of one
    category in a row; places skipped for the cap fill any remaining slots.
    """
    pool = shuffle_with_weight(places, rng)
    selected: List[Place] = []
    deferred: List[Place] = []
    last_key, streak = None, 0

    for place in pool:
        if len(selected) >= max_results:
            break
        key = place.category or 'other'
        if key == last_key and streak >= max_streak:
            deferred.append(place)
            continue
        streak = streak + 1 if key == last_key else 1
        last_key = key
        selected.append(place)

    for place in deferred:
        if len(selected) >= max_results:
            break
        selected.append(place)

    return selected


def filter_places(
    places: Iterable[Place],
    min_score: int = 30,
    categories: Optional[List[str]] = None,
    max_results: int = 50,
    sort_by: str = 'smart',
    weather: Optional[Mapping[str, Any]] = None,
    ensure_diversity: bool = True,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[Place]:
    """Filter, score and select places.

    Args:
        places: Candidate places
        min_score: Drop places scoring below this
        categories: Only keep places in these category keys
        max_results: Maximum places returned
        sort_by: 'smart', 'score', 'distance' or 'name'
        weather: Mapping with a WMO ``weather_code``
        ensure_diversity: Mix categories when no category filter is set
        now: Time used for the time-of-day boost
        rng: Random source (tests pass a seeded one)

    Returns:
        Scored copies of the selected places
    """
    context = ScoringContext.current(weather, now)

    scored = []
    for place in places:
        if is_blacklisted(place.type) or has_boring_name(place.name):
            continue
        category = get_category_for_type(place.type)
        if categories and category not in categories:
            continue
        candidate = replace(place, category=category, tags=dict(place.tags))
        candidate.score = score_place(candidate, context)
        if candidate.score >= min_score:
            scored.append(candidate)

    if sort_by == 'smart' and not categories and ensure_diversity:
        return select_with_diversity(scored, max_results, rng)

    if sort_by == 'smart':
        return select_with_streak_cap(scored, max_results, rng=rng)
    if sort_by == 'score':
        scored = shuffle_with_weight(scored, rng)
    elif sort_by == 'distance' and scored and scored[0].distance is not None:
        scored.sort(key=lambda p: p.distance if p.distance is not None else float('inf'))
    elif sort_by == 'name':
        scored.sort(key=lambda p: p.name.lower())

    return scored[:max_results]


class RecentlyShown:
    """Bounded memory of place ids already shown; oldest forgotten first."""

    def __init__(self, max_size: int = SHOWN_PLACES_MAX):
        self.max_size = max_size
        self._ids: "OrderedDict[str, None]" = OrderedDict()

    def __contains__(self, place_id) -> bool:
        return str(place_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def remember(self, place_ids: Iterable[Any]) -> None:
        for place_id in place_ids:
            key = str(place_id)
            self._ids.pop(key, None)
            self._ids[key] = None
        while len(self._ids) > self.max_size:
            self._ids.popitem(last=False)

    def clear(self) -> None:
        self._ids.clear()


def get_random_quality_places(
    places: Iterable[Place],
    count: int = 10,
    recent: Optional[RecentlyShown] = None,
    avoid_recent: bool = True,
    rng: Optional[random.Random] = None,
    **filter_options: Any,
) -> List[Place]:
    """Weighted random pick that favours places not shown recently.

    Weight is score plus up to 25 points of jitter plus 15 for places not in
    ``recent``. The picked ids are remembered in ``recent``.
    """
    rng = rng or random
    filter_options['max_results'] = 100
    filtered = filter_places(places, rng=rng, **filter_options)

    def is_fresh(place: Place) -> bool:
        return not (avoid_recent and recent is not None and place.id in recent)

    weighted = [
        ((p.score or 0) + rng.random() * 25 + (15 if is_fresh(p) else 0), i, p)
        for i, p in enumerate(filtered)
    ]
    weighted.sort(key=lambda item: (-item[0], item[1]))
    selected = [p for _, _, p in weighted[:count]]

    if selected and recent is not None:
        recent.remember(p.id for p in selected)
    return selected
