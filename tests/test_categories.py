import pytest

from nearby_places.src.categories import (
    GOOD_CATEGORIES,
    get_all_good_types,
    get_category_for_type,
    get_types_for_category,
    has_boring_name,
    is_blacklisted,
)


@pytest.mark.parametrize("place_type,category", [
    ("museum", "culture"),
    ("pub", "food"),
    ("castle", "historic"),
    ("viewpoint", "nature"),
    ("culture", "culture"),
    ("notable_place", "unique"),
    ("bank", None),
    (None, None),
])
def test_category_for_type(place_type, category):
    assert get_category_for_type(place_type) == category


def test_blacklist_matches_substrings():
    assert is_blacklisted("atm")
    assert is_blacklisted("car_parking_space")
    assert not is_blacklisted("museum")
    assert not is_blacklisted(None)


@pytest.mark.parametrize("name", ["Tesco Express", "Wembley Health Centre", "Town Car Park", "Public WC"])
def test_boring_names(name):
    assert has_boring_name(name)


def test_interesting_names_are_not_boring():
    assert not has_boring_name("The Prospect of Whitby")
    assert not has_boring_name(None)


def test_type_lists():
    assert get_types_for_category("food")[0] == "restaurant"
    assert get_types_for_category("nope") == []
    assert len(get_all_good_types()) == sum(len(c["types"]) for c in GOOD_CATEGORIES.values())
