from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

INTERACTION_TYPES = ("view", "click", "rsvp", "hide", "bookmark")
POSITIVE_INTERACTIONS = ("bookmark", "rsvp", "click")
ALGORITHMS = ("content-based", "collaborative", "hybrid")
FEEDBACK_VALUES = ("helpful", "not_helpful", "dismissed")


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def unique_tags(tags) -> Tuple[str, ...]:
    seen: list[str] = []
    for tag in tags or ():
        if tag and tag not in seen:
            seen.append(tag)
    return tuple(seen)


@dataclass(frozen=True)
class Location:
    name: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    is_virtual: bool = False

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass(frozen=True)
class NormalizedEvent:
    """Platform-agnostic event as emitted by a source plugin."""

    source: str
    external_id: str
    title: str
    start_time: datetime
    description: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    end_time: Optional[datetime] = None
    location: Location = field(default_factory=Location)
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    raw_data: Optional[dict] = field(default=None, compare=False, repr=False)

    def __post_init__(self):
        if not self.source or not self.external_id:
            raise ValueError("source and external_id are required")
        # frozen: assign normalized values through object.__setattr__
        object.__setattr__(self, "start_time", ensure_utc(self.start_time))
        if self.end_time is not None:
            object.__setattr__(self, "end_time", ensure_utc(self.end_time))
        object.__setattr__(self, "tags", unique_tags(self.tags))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source, self.external_id)


@dataclass
class GeoFilter:
    lat: float
    lng: float
    radius_km: float = 50.0


@dataclass
class EventFilters:
    location: Optional[GeoFilter] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    categories: List[str] = field(default_factory=list)
    query: Optional[str] = None
    virtual_only: bool = False
    limit: Optional[int] = None
    city: Optional[str] = None


@dataclass
class RateLimitStatus:
    limit: int
    remaining: int
    window: float
    reset_at: Optional[datetime] = None

    def copy(self) -> "RateLimitStatus":
        return replace(self)


@dataclass
class HealthStatus:
    is_healthy: bool
    last_check_at: datetime
    response_time_ms: Optional[float] = None
    last_error: Optional[str] = None


@dataclass
class ErrorRecord:
    code: str
    message: str
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class IngestionStats:
    source: str
    success_count: int = 0
    error_count: int = 0
    events_fetched: int = 0
    last_run_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    errors: List[ErrorRecord] = field(default_factory=list)


@dataclass(frozen=True)
class Event:
    """A persisted event row."""

    id: int
    source_id: int
    external_id: str
    title: str
    start_time: datetime
    description: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    end_time: Optional[datetime] = None
    location_name: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    is_virtual: bool = False
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    fetched_at: Optional[datetime] = None


@dataclass
class UserPreference:
    user_id: str
    interests: List[str] = field(default_factory=list)
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_radius_km: float = 25.0
    preferred_days: List[str] = field(default_factory=list)
    preferred_times: List[str] = field(default_factory=list)

    @property
    def has_location(self) -> bool:
        return self.location_lat is not None and self.location_lng is not None


@dataclass(frozen=True)
class UserInteraction:
    user_id: str
    event_id: int
    interaction_type: str
    created_at: datetime
    metadata: Optional[dict] = None
    id: Optional[int] = None


@dataclass
class RecommendationScore:
    event_id: int
    score: float
    reason: str
    algorithm: str


@dataclass(frozen=True)
class Recommendation:
    user_id: str
    event_id: int
    score: float
    reason: str
    algorithm: str
    created_at: datetime
    expires_at: datetime
    event: Optional[Event] = None


@dataclass(frozen=True)
class EventSource:
    id: int
    name: str
    slug: str
    is_active: bool = True
    api_config: Optional[Any] = None
