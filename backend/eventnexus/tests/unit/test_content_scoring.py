from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from eventnexus.domain.models import Event, UserPreference
from eventnexus.domain.scoring import (
    REASON_DEFAULT,
    content_score,
    day_time_score,
    distance_score,
    haversine_km,
    interest_score,
    lead_time_score,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # Monday
USER_LAT, USER_LNG = 25.2048, 55.2708


def _event(**overrides) -> Event:
    values = dict(
        id=1,
        source_id=1,
        external_id="evt-1",
        title="AI Builders Meetup",
        start_time=NOW + timedelta(days=3),
        category="Technology",
        tags=("technology",),
        location_lat=USER_LAT + 0.018,  # ~2 km north
        location_lng=USER_LNG,
    )
    values.update(overrides)
    return Event(**values)


def test_haversine_small_offset():
    assert haversine_km(USER_LAT, USER_LNG, USER_LAT + 0.018, USER_LNG) == pytest.approx(2.0, abs=0.05)


def test_perfect_match_scores_one():
    prefs = UserPreference(
        user_id="u1",
        interests=["technology"],
        location_lat=USER_LAT,
        location_lng=USER_LNG,
        location_radius_km=25,
        preferred_days=["thursday"],
        preferred_times=["morning"],
    )
    score, reason = content_score(_event(), prefs, now=NOW)
    assert score == pytest.approx(1.0)
    assert reason == "matches your interests, near your location"


def test_interest_score_counts_tag_and_category_matches():
    assert interest_score([], ["music"], "Music") == 0.5
    assert interest_score(["sports"], ["music"], "Music") == pytest.approx(0.3)
    assert interest_score(["music"], ["music"], None) == pytest.approx(0.65)
    assert interest_score(["music"], ["MUSIC"], "Live Music") == pytest.approx(1.0)


def test_distance_is_neutral_without_event_coordinates():
    assert distance_score(None, None, USER_LAT, USER_LNG, 25) == 0.5
    assert distance_score(None, 55.0, None, None, 25) == 0.5


def test_distance_is_neutral_without_user_location():
    assert distance_score(USER_LAT, USER_LNG, None, None, 25) == 0.5


@pytest.mark.parametrize(
    "offset_deg, expected",
    [
        (0.05, 1.0),   # ~5.6 km <= 25%
        (0.1, 0.8),    # ~11 km <= 50%
        (0.2, 0.6),    # ~22 km <= 100%
        (0.3, 0.3),    # ~33 km <= 150%
        (0.5, 0.1),
    ],
)
def test_distance_tiers(offset_deg, expected):
    assert distance_score(USER_LAT + offset_deg, USER_LNG, USER_LAT, USER_LNG, 25) == expected


def test_day_time_score_rewards_and_penalises_days():
    thursday_morning = datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc)
    assert day_time_score(thursday_morning, [], []) == 0.5
    assert day_time_score(thursday_morning, ["thursday"], []) == pytest.approx(0.75)
    assert day_time_score(thursday_morning, ["friday"], []) == pytest.approx(0.4)
    assert day_time_score(thursday_morning, ["Thursday"], ["morning"]) == pytest.approx(1.0)
    assert day_time_score(thursday_morning, [], ["evening"]) == 0.5


def test_day_time_score_uses_configured_timezone():
    # 21:00 UTC Thursday is already Friday 01:00 in Dubai
    start = datetime(2026, 3, 5, 21, 0, tzinfo=timezone.utc)
    assert day_time_score(start, ["friday"], [], ZoneInfo("Asia/Dubai")) == pytest.approx(0.75)
    assert day_time_score(start, ["friday"], [], timezone.utc) == pytest.approx(0.4)


@pytest.mark.parametrize(
    "days, expected",
    [(0.5, 0.1), (3, 1.0), (10, 0.8), (20, 0.6), (45, 0.4), (-2, 0.1)],
)
def test_lead_time_buckets(days, expected):
    assert lead_time_score(NOW + timedelta(days=days), NOW) == expected


def test_default_reason_when_nothing_stands_out():
    prefs = UserPreference(user_id="u2")
    score, reason = content_score(_event(location_lat=None, location_lng=None), prefs, now=NOW)
    # 0.5*0.4 + 0.5*0.3 + 0.5*0.2 + 1.0*0.1
    assert score == pytest.approx(0.55)
    assert reason == REASON_DEFAULT
