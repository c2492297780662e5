"""
Centralized configuration management with validation and type conversion.

Every tunable of the discovery pipeline lives here so that rate limits,
cache lifetimes and breaker schedules are static configuration read once
from the environment (and an optional ``.env`` file) instead of constants
scattered across modules.
"""

import os
import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field
from enum import Enum

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


class Environment(Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


DEFAULT_OVERPASS_URLS = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://maps.mail.ru/osm/tools/overpass/api/interpreter",
]

DEFAULT_MIN_INTERVALS = {
    "overpass": 6.0,
    "opentripmap": 3.0,
    "wikipedia": 2.0,
}


@dataclass
class TimeoutConfig:
    """HTTP timeouts per source, in seconds."""
    overpass_slack: float = 10.0  # added on top of the query's own [timeout:N]
    opentripmap: float = 15.0
    wikipedia: float = 10.0
    wikidata: float = 10.0


@dataclass
class RedisConfig:
    """Redis configuration. An empty url disables the backing tier."""
    url: str = ""
    socket_timeout: float = 5.0
    socket_connect_timeout: float = 5.0


@dataclass
class CacheConfig:
    """Geo cache configuration."""
    ttl: float = 600.0  # 10 minutes fresh
    stale_ttl: float = 1800.0  # 30 minutes usable
    geo_precision: int = 3  # ~110m buckets
    max_size: int = 100
    evict_fraction: float = 0.2
    prefix: str = "nearby_cache:"
    cleanup_interval: float = 300.0
    source_ttls: Dict[str, float] = field(default_factory=lambda: {
        "overpass": 600.0,
        "opentripmap": 600.0,
        "opentripmap_detail": 1800.0,
        "wikipedia": 900.0,
        "wikipedia_summary": 86400.0,
        "wikidata": 86400.0,
    })

    def ttl_for(self, source: str) -> float:
        return self.source_ttls.get(source, self.ttl)


@dataclass
class GateConfig:
    """Rate limiter and circuit breaker configuration."""
    min_intervals: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MIN_INTERVALS))
    failure_threshold: int = 3
    reset_schedule: List[float] = field(default_factory=lambda: [300.0, 1800.0, 7200.0])
    half_open_requests: int = 1


@dataclass
class TilingConfig:
    """Large-radius tiling configuration."""
    tile_size: float = 25000.0
    max_concurrent_tiles: int = 3


@dataclass
class ProviderConfig:
    """Upstream endpoints and credentials."""
    overpass_urls: List[str] = field(default_factory=lambda: list(DEFAULT_OVERPASS_URLS))
    opentripmap_url: str = "https://api.opentripmap.com/0.1"
    opentripmap_key: Optional[str] = None
    wikipedia_url: str = "https://en.wikipedia.org/w/api.php"
    wikipedia_rest_url: str = "https://{lang}.wikipedia.org/api/rest_v1"
    wikidata_url: str = "https://www.wikidata.org/wiki/Special:EntityData"
    user_agent: str = "NearbyPlaces/0.1"


@dataclass
class SelectionConfig:
    """Scoring and selection defaults."""
    min_score: int = 30
    max_results: int = 50
    recent_memory: int = 100


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    max_bytes: int = 10485760  # 10MB
    backup_count: int = 5


class Config:
    """Centralized configuration with validation and type conversion."""

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.environment = self._get_environment()
        self.debug = self._get_bool("DEBUG", False)

        self.timeout_config = TimeoutConfig(
            overpass_slack=self._get_float("TIMEOUT_OVERPASS_SLACK", 10.0),
            opentripmap=self._get_float("TIMEOUT_OPENTRIPMAP", 15.0),
            wikipedia=self._get_float("TIMEOUT_WIKIPEDIA", 10.0),
            wikidata=self._get_float("TIMEOUT_WIKIDATA", 10.0),
        )

        self.redis_config = RedisConfig(
            url=self._get_str("REDIS_URL", ""),
            socket_timeout=self._get_float("REDIS_SOCKET_TIMEOUT", 5.0),
            socket_connect_timeout=self._get_float("REDIS_SOCKET_CONNECT_TIMEOUT", 5.0),
        )

        self.cache_config = CacheConfig(
            ttl=self._get_float("CACHE_TTL", 600.0),
            stale_ttl=self._get_float("CACHE_STALE_TTL", 1800.0),
            geo_precision=self._get_int("CACHE_GEO_PRECISION", 3),
            max_size=self._get_int("CACHE_MAX_SIZE", 100),
            evict_fraction=self._get_float("CACHE_EVICT_FRACTION", 0.2),
            prefix=self._get_str("CACHE_PREFIX", "nearby_cache:"),
            cleanup_interval=self._get_float("CACHE_CLEANUP_INTERVAL", 300.0),
            source_ttls={
                "overpass": self._get_float("CACHE_TTL_OVERPASS", 600.0),
                "opentripmap": self._get_float("CACHE_TTL_OPENTRIPMAP", 600.0),
                "opentripmap_detail": self._get_float("CACHE_TTL_OPENTRIPMAP_DETAIL", 1800.0),
                "wikipedia": self._get_float("CACHE_TTL_WIKIPEDIA", 900.0),
                "wikipedia_summary": self._get_float("CACHE_TTL_WIKIPEDIA_SUMMARY", 86400.0),
                "wikidata": self._get_float("CACHE_TTL_WIKIDATA", 86400.0),
            },
        )

        self.gate_config = GateConfig(
            min_intervals={
                source: self._get_float(f"RATE_LIMIT_{source.upper()}", default)
                for source, default in DEFAULT_MIN_INTERVALS.items()
            },
            failure_threshold=self._get_int("CIRCUIT_FAILURE_THRESHOLD", 3),
            reset_schedule=[
                float(v) for v in self._get_list("CIRCUIT_RESET_SCHEDULE", ["300", "1800", "7200"])
            ],
            half_open_requests=self._get_int("CIRCUIT_HALF_OPEN_REQUESTS", 1),
        )

        self.tiling_config = TilingConfig(
            tile_size=self._get_float("TILE_SIZE", 25000.0),
            max_concurrent_tiles=self._get_int("MAX_CONCURRENT_TILES", 3),
        )

        self.provider_config = ProviderConfig(
            overpass_urls=self._get_list("OVERPASS_URLS", list(DEFAULT_OVERPASS_URLS)),
            opentripmap_url=self._get_str("OPENTRIPMAP_URL", "https://api.opentripmap.com/0.1"),
            opentripmap_key=self._get_optional("OPENTRIPMAP_API_KEY") or self._get_optional("OPENTRIPMAP_KEY"),
            wikipedia_url=self._get_str("WIKIPEDIA_API_URL", "https://en.wikipedia.org/w/api.php"),
            wikipedia_rest_url=self._get_str("WIKIPEDIA_REST_URL", "https://{lang}.wikipedia.org/api/rest_v1"),
            wikidata_url=self._get_str("WIKIDATA_URL", "https://www.wikidata.org/wiki/Special:EntityData"),
            user_agent=self._get_str("USER_AGENT", "NearbyPlaces/0.1"),
        )

        self.selection_config = SelectionConfig(
            min_score=self._get_int("SELECTION_MIN_SCORE", 30),
            max_results=self._get_int("SELECTION_MAX_RESULTS", 50),
            recent_memory=self._get_int("SELECTION_RECENT_MEMORY", 100),
        )

        self.logging_config = LoggingConfig(
            level=self._get_str("LOG_LEVEL", "INFO"),
            format=self._get_str("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            file=self._get_optional("LOG_FILE"),
            max_bytes=self._get_int("LOG_MAX_BYTES", 10485760),
            backup_count=self._get_int("LOG_BACKUP_COUNT", 5),
        )

        self._validate()

    def _get_environment(self) -> Environment:
        """Get application environment."""
        env_str = self._get_str("ENVIRONMENT", "development").lower()
        try:
            return Environment(env_str)
        except ValueError:
            raise ValueError(f"Invalid environment: {env_str}")

    def _get_optional(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get optional environment variable.

        Args:
            key: Environment variable name
            default: Default value if not found

        Returns:
            Environment variable value or default
        """
        return os.getenv(key, default)

    def _get_str(self, key: str, default: str) -> str:
        """Get string environment variable with default."""
        return os.getenv(key, default)

    def _get_int(self, key: str, default: int) -> int:
        """Get integer environment variable with default.

        Raises:
            ValueError: If value cannot be converted to int
        """
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"Invalid integer for {key}: {value}")

    def _get_float(self, key: str, default: float) -> float:
        """Get float environment variable with default.

        Raises:
            ValueError: If value cannot be converted to float
        """
        value = os.getenv(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"Invalid float for {key}: {value}")

    def _get_bool(self, key: str, default: bool) -> bool:
        """Get boolean environment variable with default."""
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ('1', 'true', 'yes', 'on')

    def _get_list(self, key: str, default: list) -> list:
        """Get comma separated list environment variable with default."""
        value = os.getenv(key)
        if value is None:
            return default
        return [item.strip() for item in value.split(',') if item.strip()]

    def _validate(self):
        """Validate configuration values."""
        for source, interval in self.gate_config.min_intervals.items():
            if interval < 0:
                raise ValueError(f"Invalid rate limit interval for {source}: {interval}")

        if self.gate_config.failure_threshold < 1:
            raise ValueError(f"Invalid circuit failure threshold: {self.gate_config.failure_threshold}")

        if not self.gate_config.reset_schedule or any(t <= 0 for t in self.gate_config.reset_schedule):
            raise ValueError(f"Invalid circuit reset schedule: {self.gate_config.reset_schedule}")

        if self.cache_config.ttl <= 0 or self.cache_config.stale_ttl <= 0:
            raise ValueError("Cache ttl and stale ttl must be positive")

        if self.cache_config.max_size < 1:
            raise ValueError(f"Invalid cache max size: {self.cache_config.max_size}")

        if not 0 < self.cache_config.evict_fraction <= 1:
            raise ValueError(f"Invalid cache evict fraction: {self.cache_config.evict_fraction}")

        if self.tiling_config.tile_size <= 0 or self.tiling_config.max_concurrent_tiles < 1:
            raise ValueError("Tile size and tile concurrency must be positive")

        if not self.provider_config.overpass_urls:
            raise ValueError("At least one Overpass endpoint is required")

        # Validate Redis URL only if provided
        redis_url = self.redis_config.url
        if redis_url and not redis_url.startswith(('redis://', 'rediss://', 'unix://')):
            raise ValueError(f"Invalid Redis URL: {redis_url}")

        # Optional API key warnings (don't crash)
        if not self.provider_config.opentripmap_key:
            logger.warning("OPENTRIPMAP_API_KEY not set - curated attractions will be skipped")

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    def is_testing(self) -> bool:
        """Check if running in testing environment."""
        return self.environment == Environment.TESTING

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for debugging.

        API keys are reported as present/absent only.
        """
        return {
            'environment': self.environment.value,
            'debug': self.debug,
            'redis_url': self.redis_config.url,
            'cache_config': {
                'ttl': self.cache_config.ttl,
                'stale_ttl': self.cache_config.stale_ttl,
                'geo_precision': self.cache_config.geo_precision,
                'max_size': self.cache_config.max_size,
            },
            'gate_config': {
                'min_intervals': dict(self.gate_config.min_intervals),
                'failure_threshold': self.gate_config.failure_threshold,
                'reset_schedule': list(self.gate_config.reset_schedule),
            },
            'tiling_config': {
                'tile_size': self.tiling_config.tile_size,
                'max_concurrent_tiles': self.tiling_config.max_concurrent_tiles,
            },
            'overpass_urls': list(self.provider_config.overpass_urls),
            'opentripmap_key_set': bool(self.provider_config.opentripmap_key),
        }


_config: Optional[Config] = None


def get_config() -> Config:
    """Get the process configuration instance, built on first use.

    Returns:
        Configuration instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config


def setup_logging():
    """Set up logging based on configuration."""
    from logging.handlers import RotatingFileHandler

    config = get_config()

    logging.basicConfig(
        level=getattr(logging, config.logging_config.level.upper()),
        format=config.logging_config.format,
    )

    if config.logging_config.file:
        file_handler = RotatingFileHandler(
            config.logging_config.file,
            maxBytes=config.logging_config.max_bytes,
            backupCount=config.logging_config.backup_count,
        )
        file_handler.setFormatter(logging.Formatter(config.logging_config.format))
        logging.getLogger().addHandler(file_handler)

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    if config.is_development() and config.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif config.is_production():
        logging.getLogger().setLevel(logging.INFO)
