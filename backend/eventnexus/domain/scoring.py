from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Iterable, Optional, Sequence
import math

from .models import Event, UserPreference, ensure_utc

# Pesos del score content-based
INTEREST_WEIGHT = 0.4
DISTANCE_WEIGHT = 0.3
DAY_TIME_WEIGHT = 0.2
LEAD_TIME_WEIGHT = 0.1

NEUTRAL_SCORE = 0.5
INCLUSION_FLOOR = 0.1

INTEREST_BASE = 0.3
INTEREST_STEP = 0.35

# (fraction of preferred radius, score), checked in order
DISTANCE_TIERS = (
    (0.25, 1.0),
    (0.5, 0.8),
    (1.0, 0.6),
    (1.5, 0.3),
)
FAR_SCORE = 0.1

TIME_BUCKETS = {
    "morning": (6, 12),
    "afternoon": (12, 18),
    "evening": (18, 24),
}

REASON_INTERESTS = "matches your interests"
REASON_NEARBY = "near your location"
REASON_DEFAULT = "recommended for you"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    r = 6371.0  # Earth radius km
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def interest_score(interests: Sequence[str], tags: Iterable[str], category: Optional[str]) -> float:
    if not interests:
        return NEUTRAL_SCORE
    lowered_tags = [tag.lower() for tag in tags or ()]
    lowered_category = (category or "").lower()
    matches = 0
    for interest in interests:
        needle = interest.lower()
        if needle in lowered_tags:
            matches += 1
        if needle and needle in lowered_category:
            matches += 1
    return min(1.0, INTEREST_BASE + matches * INTEREST_STEP)


def distance_score(
    event_lat: Optional[float],
    event_lng: Optional[float],
    user_lat: Optional[float],
    user_lng: Optional[float],
    radius_km: float,
) -> float:
    if event_lat is None or event_lng is None:
        return NEUTRAL_SCORE
    if user_lat is None or user_lng is None:
        return NEUTRAL_SCORE
    distance = haversine_km(event_lat, event_lng, user_lat, user_lng)
    for fraction, score in DISTANCE_TIERS:
        if distance <= radius_km * fraction:
            return score
    return FAR_SCORE


def day_time_score(
    start: datetime,
    preferred_days: Sequence[str],
    preferred_times: Sequence[str],
    tz: tzinfo = timezone.utc,
) -> float:
    local = ensure_utc(start).astimezone(tz)
    weekday = local.strftime("%A").lower()
    score = NEUTRAL_SCORE
    days = [day.lower() for day in preferred_days or ()]
    if days:
        score += 0.25 if weekday in days else -0.1
    for bucket in preferred_times or ():
        bounds = TIME_BUCKETS.get(bucket.lower())
        if bounds and bounds[0] <= local.hour < bounds[1]:
            score += 0.25
    return max(0.0, min(1.0, score))


def lead_time_score(start: datetime, now: datetime) -> float:
    days_until = (ensure_utc(start) - ensure_utc(now)).total_seconds() / 86400
    if 1 <= days_until <= 7:
        return 1.0
    if 7 < days_until <= 14:
        return 0.8
    if 14 < days_until <= 30:
        return 0.6
    if days_until > 30:
        return 0.4
    return 0.1


def content_score(
    event: Event,
    preferences: UserPreference,
    *,
    now: datetime,
    tz: tzinfo = timezone.utc,
) -> tuple[float, str]:
    """Weighted content-based score for ``event`` plus its human readable reason."""
    reasons: list[str] = []
    interest = interest_score(preferences.interests, event.tags, event.category)
    if interest > 0.5:
        reasons.append(REASON_INTERESTS)
    distance = distance_score(
        event.location_lat,
        event.location_lng,
        preferences.location_lat,
        preferences.location_lng,
        preferences.location_radius_km,
    )
    if distance > 0.6:
        reasons.append(REASON_NEARBY)
    day_time = day_time_score(event.start_time, preferences.preferred_days, preferences.preferred_times, tz)
    lead = lead_time_score(event.start_time, now)
    total = (
        interest * INTEREST_WEIGHT
        + distance * DISTANCE_WEIGHT
        + day_time * DAY_TIME_WEIGHT
        + lead * LEAD_TIME_WEIGHT
    )
    return min(1.0, total), ", ".join(reasons) if reasons else REASON_DEFAULT
