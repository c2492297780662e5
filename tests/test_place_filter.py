import random
from datetime import datetime

import pytest

from nearby_places.models import Place
from nearby_places.src.place_filter import (
    RecentlyShown,
    ScoringContext,
    filter_places,
    get_random_quality_places,
    is_good_weather,
    score_place,
    select_with_diversity,
    select_with_streak_cap,
    shuffle_with_weight,
    time_context,
)

NIGHT = datetime(2024, 6, 1, 23, 30)


class FixedRandom:
    """Deterministic stand-in: no jitter, no shuffling."""

    def random(self):
        return 0.5

    def shuffle(self, items):
        pass


def _place(pid, name, type_, source="overpass", **kwargs):
    return Place(id=pid, name=name, lat=51.5, lng=-0.12, type=type_, source=source, **kwargs)


def test_time_context_buckets():
    assert time_context(7) == "morning"
    assert time_context(12) == "lunch"
    assert time_context(15) == "afternoon"
    assert time_context(18) == "evening"
    assert time_context(23) == "night"
    assert time_context(3) == "night"


def test_weather_codes():
    assert is_good_weather(None)
    assert is_good_weather({"weather_code": 0})
    assert not is_good_weather({"weather_code": 61})
    assert not is_good_weather({"weatherCode": 95})


def test_score_rewards_rich_records():
    museum = _place("m", "British Museum", "museum", image="x.jpg", website="https://bm.org",
                    wikipedia="en:British Museum")
    assert score_place(museum, ScoringContext("night")) == 75


def test_bad_weather_boosts_indoor_categories():
    museum = _place("m", "British Museum", "museum", image="x.jpg", website="https://bm.org",
                    wikipedia="en:British Museum")
    assert score_place(museum, ScoringContext("night", {"weather_code": 61})) == 90
    assert score_place(museum, ScoringContext("night", {"weather_code": 0})) == 75


def test_time_of_day_boost():
    restaurant = _place("r", "Pizza Pilgrims", "restaurant")
    assert score_place(restaurant, ScoringContext("lunch")) == 50
    assert score_place(restaurant, ScoringContext("afternoon")) == 35


def test_curated_rating_bonus():
    curated = _place("otm_1", "Leake Street Tunnel", "culture", source="opentripmap", rating=3.0)
    assert score_place(curated, ScoringContext("night")) == 55


@pytest.mark.parametrize("place", [
    _place("b", "Barclays", "bank"),
    _place("t", "Tesco Express", "restaurant"),
    _place("p", "Somewhere", "parking"),
])
def test_unwanted_places_score_zero(place):
    assert score_place(place, ScoringContext("night")) == 0


def test_score_is_capped_at_100():
    place = _place("c", "The Old Castle Inn", "castle", image="i", website="w", opening_hours="24/7",
                   description="A very old castle on a hill with a view", wikipedia="en:x",
                   phone="1", address="High St")
    assert score_place(place, ScoringContext("afternoon")) == 100


def test_filter_drops_unwanted_and_low_scores():
    places = [
        _place("museum", "British Museum", "museum", image="x.jpg"),
        _place("bank", "Barclays", "bank"),
        _place("tesco", "Tesco Metro", "restaurant"),
        _place("village", "Little Snoring", "locality", wikipedia="en:Little Snoring"),
        _place("pizza", "Pizza Pilgrims", "restaurant"),
    ]

    result = filter_places(places, sort_by="score", now=NIGHT, rng=FixedRandom())

    assert [p.id for p in result] == ["museum", "pizza"]
    assert [p.category for p in result] == ["culture", "food"]
    assert all(p.score >= 30 for p in result)
    assert places[0].score is None


def test_filter_by_category():
    places = [
        _place("museum", "British Museum", "museum"),
        _place("pizza", "Pizza Pilgrims", "restaurant"),
        _place("cafe", "Monmouth Coffee", "cafe"),
    ]
    result = filter_places(places, categories=["food"], now=NIGHT, rng=random.Random(1))
    assert {p.id for p in result} == {"pizza", "cafe"}


def test_sort_by_distance_and_name():
    places = [
        _place("far", "Alpha Cafe", "cafe", distance=900.0),
        _place("near", "Zulu Cafe", "cafe", distance=100.0),
    ]
    assert [p.id for p in filter_places(places, sort_by="distance", now=NIGHT)] == ["near", "far"]
    assert [p.id for p in filter_places(places, sort_by="name", now=NIGHT)] == ["far", "near"]


def test_max_results_is_respected():
    places = [_place(str(i), f"Cafe {i}", "cafe") for i in range(20)]
    assert len(filter_places(places, max_results=5, now=NIGHT, rng=random.Random(3))) == 5


def test_diversity_never_repeats_category_while_others_remain():
    types = {"food": "restaurant", "nature": "park", "culture": "museum"}
    places = [
        _place(f"{key}{i}", f"{key.title()} Spot {i}", type_)
        for key, type_ in types.items()
        for i in range(4)
    ]

    for seed in range(10):
        result = filter_places(places, max_results=12, now=NIGHT, rng=random.Random(seed))
        categories = [p.category for p in result]
        assert len(result) == 12
        assert all(a != b for a, b in zip(categories, categories[1:]))


def test_diversity_round_robin_in_category_order():
    places = [
        Place(id="f1", name="F1", lat=0, lng=0, type="restaurant", source="osm", category="food", score=50),
        Place(id="f2", name="F2", lat=0, lng=0, type="restaurant", source="osm", category="food", score=40),
        Place(id="c1", name="C1", lat=0, lng=0, type="museum", source="osm", category="culture", score=60),
    ]
    result = select_with_diversity(places, 10, FixedRandom())
    assert [p.id for p in result] == ["f1", "c1", "f2"]


def test_streak_cap_defers_long_runs():
    food = [Place(id=f"f{i}", name=f"F{i}", lat=0, lng=0, type="cafe", source="osm", category="food", score=90)
            for i in range(5)]
    culture = [Place(id=f"c{i}", name=f"C{i}", lat=0, lng=0, type="museum", source="osm", category="culture",
                     score=0) for i in range(2)]

    capped = select_with_streak_cap(food + culture, 4, rng=random.Random(5))
    assert [p.category for p in capped] == ["food", "food", "culture", "culture"]

    filled = select_with_streak_cap(food + culture, 7, rng=random.Random(5))
    assert [p.category for p in filled] == ["food", "food", "culture", "culture", "food", "food", "food"]


def test_recently_shown_forgets_oldest():
    recent = RecentlyShown(max_size=3)
    recent.remember(["a", "b", "c"])
    recent.remember(["a", "d"])

    assert len(recent) == 3
    assert "a" in recent and "d" in recent and "c" in recent
    assert "b" not in recent


def test_random_pick_prefers_places_not_shown_recently():
    places = [
        _place("a", "Alpha Museum", "museum"),
        _place("b", "Beta Museum", "museum"),
    ]
    recent = RecentlyShown()
    recent.remember(["a"])

    first = get_random_quality_places(places, count=1, recent=recent, rng=FixedRandom(), now=NIGHT)
    assert [p.id for p in first] == ["b"]
    assert "b" in recent

    second = get_random_quality_places(places, count=1, recent=recent, rng=FixedRandom(), now=NIGHT)
    assert [p.id for p in second] == ["a"]


def test_random_pick_without_memory():
    places = [_place(str(i), f"Cafe {i}", "cafe") for i in range(15)]
    picked = get_random_quality_places(places, count=10, rng=random.Random(2), now=NIGHT)
    assert len(picked) == 10
    assert len({p.id for p in picked}) == 10


def test_weighted_shuffle_without_jitter_is_a_stable_score_sort():
    places = [
        _place("a", "A", "museum", score=40),
        _place("b", "B", "museum", score=80),
        _place("c", "C", "museum", score=60),
        _place("d", "D", "museum", score=80),
    ]

    ordered = shuffle_with_weight(places, FixedRandom())

    assert [p.id for p in ordered] == ["b", "d", "c", "a"]
    assert [p.id for p in places] == ["a", "b", "c", "d"]
