import pytest

from nearby_places.config import CacheConfig, Config, Environment, TimeoutConfig


def test_defaults(monkeypatch):
    for key in ("CIRCUIT_FAILURE_THRESHOLD", "CIRCUIT_RESET_SCHEDULE", "RATE_LIMIT_OVERPASS", "OVERPASS_URLS"):
        monkeypatch.delenv(key, raising=False)

    config = Config()

    assert config.environment == Environment.TESTING
    assert config.is_testing()
    assert config.gate_config.failure_threshold == 3
    assert config.gate_config.reset_schedule == [300.0, 1800.0, 7200.0]
    assert config.gate_config.min_intervals["overpass"] == 6.0
    assert config.gate_config.min_intervals["wikipedia"] == 2.0
    assert config.cache_config.geo_precision == 3
    assert len(config.provider_config.overpass_urls) == 3
    assert config.provider_config.opentripmap_key is None


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CIRCUIT_RESET_SCHEDULE", "60, 120")
    monkeypatch.setenv("RATE_LIMIT_OPENTRIPMAP", "0.5")
    monkeypatch.setenv("OVERPASS_URLS", "https://one.example/api,https://two.example/api")
    monkeypatch.setenv("OPENTRIPMAP_KEY", "legacy-name")

    config = Config()

    assert config.gate_config.reset_schedule == [60.0, 120.0]
    assert config.gate_config.min_intervals["opentripmap"] == 0.5
    assert config.provider_config.overpass_urls == ["https://one.example/api", "https://two.example/api"]
    assert config.provider_config.opentripmap_key == "legacy-name"
    assert config.to_dict()["opentripmap_key_set"] is True


@pytest.mark.parametrize("key,value", [
    ("CIRCUIT_FAILURE_THRESHOLD", "three"),
    ("CIRCUIT_FAILURE_THRESHOLD", "0"),
    ("RATE_LIMIT_OVERPASS", "-1"),
    ("CACHE_EVICT_FRACTION", "1.5"),
    ("REDIS_URL", "http://localhost:6379"),
    ("ENVIRONMENT", "moon"),
])
def test_invalid_values_are_rejected(monkeypatch, key, value):
    monkeypatch.setenv(key, value)
    with pytest.raises(ValueError):
        Config()


def test_cache_ttl_per_source():
    cache = CacheConfig()
    assert cache.ttl_for("wikipedia") == 900.0
    assert cache.ttl_for("opentripmap_detail") == 1800.0
    assert cache.ttl_for("unknown") == cache.ttl


def test_timeout_defaults():
    timeouts = TimeoutConfig()
    assert timeouts.wikipedia == 10.0
    assert timeouts.wikidata == 10.0
    assert timeouts.opentripmap == 15.0
