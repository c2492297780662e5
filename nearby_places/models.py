"""
Data shapes shared by every stage of the discovery pipeline.

Upstream records arrive as loosely typed JSON; each fetcher maps them into a
``Place`` with true optionals so later stages never guess at missing keys.
Places cross the cache boundary as plain dicts (``to_dict``/``from_dict``)
so a cached snapshot can never be mutated through a live object.
"""

import math
import time
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Optional


@dataclass
class Place:
    """A discovered point of interest."""
    id: str
    name: str
    lat: float
    lng: float
    type: str
    source: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    website: Optional[str] = None
    opening_hours: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    image_source: Optional[str] = None
    wikipedia: Optional[str] = None
    wikipedia_url: Optional[str] = None
    wikidata: Optional[str] = None
    rating: Optional[float] = None
    quality_score: Optional[int] = None
    score: Optional[int] = None
    category: Optional[str] = None
    distance: Optional[float] = None  # meters from the search center
    needs_enrichment: bool = False
    tags: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Place":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["tags"] = dict(values.get("tags") or {})
        return cls(**values)


@dataclass(frozen=True)
class Tile:
    """A sub-region of a search: center plus radius in meters."""
    lat: float
    lng: float
    radius: float


@dataclass
class CacheEntry:
    """Cached data with creation, hard-expiry and soft-expiry timestamps.

    Timestamps are wall-clock seconds so entries survive a trip through the
    backing store. ``timestamp <= expires <= stale_until`` always holds.
    """
    data: Any
    timestamp: float
    expires: float
    stale_until: float

    @classmethod
    def create(cls, data: Any, ttl: float, stale_ttl: float, now: Optional[float] = None) -> "CacheEntry":
        now = time.time() if now is None else now
        return cls(
            data=data,
            timestamp=now,
            expires=now + ttl,
            stale_until=now + max(ttl, stale_ttl),
        )

    def is_fresh(self, now: float) -> bool:
        return now < self.expires

    def is_stale(self, now: float) -> bool:
        return self.expires <= now < self.stale_until

    def is_expired(self, now: float) -> bool:
        return now >= self.stale_until

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "timestamp": self.timestamp,
            "expires": self.expires,
            "stale_until": self.stale_until,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CacheEntry":
        return cls(
            data=raw["data"],
            timestamp=float(raw["timestamp"]),
            expires=float(raw["expires"]),
            stale_until=float(raw["stale_until"]),
        )


@dataclass
class CacheResult:
    """Outcome of a stale-while-revalidate lookup."""
    data: Any
    is_fresh: bool
    is_stale: bool


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    R = 6371000.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
