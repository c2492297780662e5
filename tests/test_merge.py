from nearby_places.models import Place
from nearby_places.src.merge import location_key, merge_places, normalize_name


def _place(pid, name, lat=51.5, lng=-0.12, source="overpass", **kwargs):
    return Place(id=pid, name=name, lat=lat, lng=lng, type=kwargs.pop("type", "pub"), source=source, **kwargs)


def test_normalize_name_ignores_case_punctuation_and_article():
    assert normalize_name("The Crown Inn") == "crowninn"
    assert normalize_name("Crown Inn, The") == "crowninn"
    assert normalize_name("St. Paul's Cathedral") == "stpaulscathedral"
    assert normalize_name("The") == "the"
    assert normalize_name("") == ""


def test_location_key_rounds_to_four_decimals():
    assert location_key(_place("a", "x", 51.50004, -0.12004)) == "51.5000,-0.1200"


def test_same_pub_from_two_sources_is_merged():
    primary = [_place("osm_node_1", "The Crown Inn")]
    curated = [_place("otm_N1", "Crown Inn, The", source="opentripmap")]

    merged = merge_places(primary, curated, [])

    assert len(merged) == 1
    assert merged[0].id == "osm_node_1"
    assert merged[0].source == "osm"


def test_exact_name_match_anywhere_is_dropped():
    primary = [_place("osm_node_1", "Tower Bridge", 51.5055, -0.0754)]
    curated = [_place("otm_N2", "tower bridge", 51.5060, -0.0760, source="opentripmap")]

    assert [p.id for p in merge_places(primary, curated, [])] == ["osm_node_1"]


def test_partial_name_in_same_bucket_is_dropped():
    primary = [_place("osm_way_5", "British Museum", type="museum")]
    notable = [_place("wiki_9", "The British Museum Reading Room", source="wikipedia")]

    assert len(merge_places(primary, [], notable)) == 1


def test_partial_name_elsewhere_is_kept():
    primary = [_place("osm_way_5", "British Museum", type="museum")]
    notable = [_place("wiki_9", "British Museum Reading Room", 51.6, -0.2, source="wikipedia")]

    merged = merge_places(primary, [], notable)
    assert [p.id for p in merged] == ["osm_way_5", "wiki_9"]
    assert merged[1].needs_enrichment


def test_notable_duplicate_backfills_wikipedia():
    primary = [_place("osm_way_5", "Old Royal Naval College", type="college")]
    notable = [_place("wiki_3", "Royal Naval College", source="wikipedia",
                      wikipedia="en:Old Royal Naval College")]

    merged = merge_places(primary, [], notable)

    assert len(merged) == 1
    assert merged[0].wikipedia == "en:Old Royal Naval College"


def test_backfill_never_overwrites_existing_reference():
    primary = [_place("osm_way_5", "Royal Observatory", wikipedia="en:Royal Observatory, Greenwich")]
    notable = [_place("wiki_3", "Observatory", source="wikipedia", wikipedia="en:Observatory")]

    merged = merge_places(primary, [], notable)
    assert merged[0].wikipedia == "en:Royal Observatory, Greenwich"


def test_inputs_are_not_mutated():
    primary = [_place("osm_node_1", "The Crown Inn")]
    curated = [_place("otm_N1", "Gherkin", 51.5145, -0.0803, source="opentripmap")]
    notable = [_place("wiki_1", "Crown", source="wikipedia", wikipedia="en:Crown Inn")]

    merged = merge_places(primary, curated, notable)

    assert primary[0].source == "overpass"
    assert primary[0].wikipedia is None
    assert not curated[0].needs_enrichment
    assert merged[0] is not primary[0]
    assert merged[0].wikipedia == "en:Crown Inn"


def test_distinct_places_all_survive():
    primary = [_place("osm_node_1", "The Crown Inn"), _place("osm_node_2", "Borough Market", 51.5055, -0.091)]
    curated = [_place("otm_N1", "Gherkin", 51.5145, -0.0803, source="opentripmap")]
    notable = [_place("wiki_1", "Southwark Cathedral", 51.5061, -0.0897, source="wikipedia")]

    merged = merge_places(primary, curated, notable)

    assert [p.id for p in merged] == ["osm_node_1", "osm_node_2", "otm_N1", "wiki_1"]
    assert [p.source for p in merged] == ["osm", "osm", "opentripmap", "wikipedia"]
