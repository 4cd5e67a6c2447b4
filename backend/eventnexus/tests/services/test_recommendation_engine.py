from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from eventnexus.domain.models import RecommendationScore, UserPreference
from eventnexus.infra.db.events_repository import EventsRepository, event_row_from_normalized
from eventnexus.infra.db.recommendations_repository import RecommendationsRepository
from eventnexus.infra.db.sources_repository import EventSourcesRepository
from eventnexus.infra.db.users_repository import UsersRepository
from eventnexus.services.recommendations import (
    CACHE_TTL,
    REASON_COLLABORATIVE,
    RecommendationEngine,
    RecommendationOptions,
    blend,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
HOME = (25.2048, 55.2708)


class Clock:
    def __init__(self):
        self.now = NOW

    def __call__(self):
        return self.now


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def seeded(engine, event_factory):
    """Three upcoming events (ids 1..3) plus one past event (id 4)."""
    source_id = EventSourcesRepository(engine).ensure_source("luma")
    events = [
        event_factory("luma", "jazz", title="Jazz Night", category="Music", tags=["music"], lat=HOME[0] + 0.01, lng=HOME[1]),
        event_factory("luma", "pitch", title="Startup Pitch", category="Business"),
        event_factory("luma", "rock", title="Rock concert", tags=["music"], lat=HOME[0] + 1.0, lng=HOME[1]),
        event_factory("luma", "old", title="Last month", start=NOW - timedelta(days=30)),
    ]
    EventsRepository(engine).upsert_events([event_row_from_normalized(event, source_id) for event in events])
    return engine


@pytest.fixture()
def recommender(seeded, clock):
    return RecommendationEngine(
        EventsRepository(seeded),
        UsersRepository(seeded),
        RecommendationsRepository(seeded),
        clock=clock,
    )


def _music_fan(engine, user_id="fan"):
    UsersRepository(engine).upsert_preferences(
        UserPreference(user_id=user_id, interests=["music"], location_lat=HOME[0], location_lng=HOME[1])
    )


def _interact(engine, user_id, event_id, kind):
    UsersRepository(engine).record_interaction(user_id, event_id, kind, created_at=NOW)


def test_constructor_requires_repositories(seeded):
    with pytest.raises(ValueError):
        RecommendationEngine(None, UsersRepository(seeded), RecommendationsRepository(seeded))


def test_unknown_algorithm_rejected(recommender):
    with pytest.raises(ValueError):
        recommender.get_recommendations_for_user("fan", RecommendationOptions(algorithm="random"))


def test_collaborative_cold_start_is_empty(recommender):
    assert recommender.collaborative_filtering("nobody") == []
    result = recommender.get_recommendations_for_user("nobody", RecommendationOptions(algorithm="collaborative"))
    assert result.recommendations == []


def test_collaborative_needs_positive_interactions(recommender, seeded):
    _interact(seeded, "viewer", 1, "view")
    _interact(seeded, "other", 1, "bookmark")
    _interact(seeded, "other", 2, "bookmark")
    assert recommender.collaborative_filtering("viewer") == []


def test_removed_bookmark_is_not_a_positive_signal(recommender, seeded):
    UsersRepository(seeded).record_interaction("me", 1, "bookmark", {"removed": True}, created_at=NOW)
    _interact(seeded, "other", 1, "bookmark")
    _interact(seeded, "other", 2, "bookmark")
    assert recommender.collaborative_filtering("me") == []


def test_collaborative_scores_similar_users(recommender, seeded):
    _interact(seeded, "me", 1, "bookmark")
    _interact(seeded, "b", 1, "bookmark")
    _interact(seeded, "b", 2, "rsvp")
    _interact(seeded, "b", 3, "click")
    _interact(seeded, "c", 1, "click")
    _interact(seeded, "c", 2, "bookmark")
    _interact(seeded, "stranger", 3, "bookmark")
    scores = recommender.collaborative_filtering("me")
    # event 2: (1 + 1.5) + (1 + 2) = 5.5 ; event 3: 1 + 0 = 1
    assert [item.event_id for item in scores] == [2, 3]
    assert scores[0].score == pytest.approx(5.5 / 8)
    assert scores[1].score == pytest.approx(1 / 8)
    assert all(item.reason == REASON_COLLABORATIVE for item in scores)
    assert all(item.algorithm == "collaborative" for item in scores)


def test_content_based_ranks_by_preferences(recommender, seeded):
    _music_fan(seeded)
    result = recommender.get_recommendations_for_user(
        "fan", RecommendationOptions(algorithm="content-based", limit=3)
    )
    assert [rec.event.title for rec in result.recommendations] == ["Jazz Night", "Rock concert", "Startup Pitch"]
    assert result.recommendations[0].score == pytest.approx(0.9)
    assert result.recommendations[0].reason == "matches your interests, near your location"
    assert result.recommendations[0].expires_at == NOW + CACHE_TTL
    assert result.cached is False


def test_content_based_exclude_seen(recommender, seeded):
    _music_fan(seeded)
    _interact(seeded, "fan", 1, "view")
    options = RecommendationOptions(algorithm="content-based", exclude_seen=True)
    scores = recommender.content_based_filtering("fan", UsersRepository(seeded).get_preferences("fan"), options)
    assert 1 not in [item.event_id for item in scores]


def test_no_preferences_falls_back_to_upcoming(recommender):
    result = recommender.get_recommendations_for_user("newcomer")
    assert [rec.event_id for rec in result.recommendations] == [1, 2, 3]
    assert {rec.score for rec in result.recommendations} == {0.5}
    assert {rec.reason for rec in result.recommendations} == {"upcoming event"}


def test_cached_recommendations_served_until_expiry(recommender, seeded, clock):
    _music_fan(seeded)
    options = RecommendationOptions(algorithm="content-based", limit=2)
    first = recommender.get_recommendations_for_user("fan", options)
    second = recommender.get_recommendations_for_user("fan", options)
    assert first.cached is False
    assert second.cached is True
    assert [rec.event_id for rec in second.recommendations] == [rec.event_id for rec in first.recommendations]

    clock.now = NOW + CACHE_TTL + timedelta(hours=1)
    third = recommender.get_recommendations_for_user("fan", options)
    assert third.cached is False
    assert third.recommendations[0].expires_at == clock.now + CACHE_TTL


def test_cache_with_too_few_rows_regenerates(recommender, seeded):
    _music_fan(seeded)
    recommender.get_recommendations_for_user("fan", RecommendationOptions(algorithm="content-based", limit=1))
    result = recommender.get_recommendations_for_user("fan", RecommendationOptions(algorithm="content-based", limit=3))
    assert result.cached is False
    assert len(result.recommendations) == 3


def test_force_refresh_skips_cache(recommender, seeded):
    _music_fan(seeded)
    options = RecommendationOptions(algorithm="content-based", limit=2)
    recommender.get_recommendations_for_user("fan", options)
    options.force_refresh = True
    assert recommender.get_recommendations_for_user("fan", options).cached is False


def test_hybrid_blends_both_sources(recommender, seeded):
    _music_fan(seeded)
    _interact(seeded, "fan", 1, "bookmark")
    _interact(seeded, "buddy", 1, "bookmark")
    _interact(seeded, "buddy", 2, "rsvp")
    result = recommender.get_recommendations_for_user("fan", RecommendationOptions(limit=5))
    by_event = {rec.event_id: rec for rec in result.recommendations}
    # event 2: content 0.47 * 0.6 + collaborative (2.5 / 8) * 0.4
    assert by_event[2].score == pytest.approx(0.47 * 0.6 + (2.5 / 8) * 0.4)
    assert by_event[2].algorithm == "hybrid"
    assert by_event[2].reason == f"recommended for you, {REASON_COLLABORATIVE}"
    assert by_event[1].score == pytest.approx(0.9 * 0.6)
    assert by_event[1].algorithm == "content-based"


def test_blend_ties_keep_candidate_order():
    content = [
        RecommendationScore(10, 0.8, "matches your interests", "content-based"),
        RecommendationScore(20, 0.4, "recommended for you", "content-based"),
    ]
    collaborative = [RecommendationScore(20, 0.6, REASON_COLLABORATIVE, "collaborative")]
    blended = blend(content, collaborative, limit=10)
    assert [item.event_id for item in blended] == [10, 20]
    assert blended[0].score == pytest.approx(0.48)
    assert blended[1].score == pytest.approx(0.48)
    assert blended[1].algorithm == "hybrid"
    # inputs are left untouched
    assert content[1].score == 0.4


def test_blend_caps_at_one():
    blended = blend(
        [RecommendationScore(1, 1.0, "a", "content-based")],
        [RecommendationScore(1, 1.0, "b", "collaborative")],
        limit=5,
    )
    assert blended[0].score == 1.0


def test_feedback_is_recorded_as_view(recommender, seeded):
    recommender.record_recommendation_feedback("fan", 1, "helpful")
    interactions = UsersRepository(seeded).get_interactions("fan")
    assert [(item.interaction_type, item.metadata) for item in interactions] == [
        ("view", {"recommendation_feedback": "helpful"})
    ]
    # a view is not a positive signal for collaborative filtering
    assert recommender.collaborative_filtering("fan") == []


def test_feedback_value_validated(recommender):
    with pytest.raises(ValueError):
        recommender.record_recommendation_feedback("fan", 1, "love it")


def test_clear_user_recommendations(recommender, seeded):
    _music_fan(seeded)
    recommender.get_recommendations_for_user("fan", RecommendationOptions(algorithm="content-based", limit=3))
    assert recommender.clear_user_recommendations("fan") == 3
    assert RecommendationsRepository(seeded).list_valid("fan", NOW) == []


def test_personalized_feed_separates_new_events(recommender, seeded):
    _music_fan(seeded)
    feed = recommender.get_personalized_feed("fan", RecommendationOptions(algorithm="content-based"))
    recommended_ids = [rec.event_id for rec in feed.recommended]
    assert recommended_ids == [1, 3, 2, 4][: len(recommended_ids)]
    assert all(event.id not in recommended_ids for event in feed.new_events)
    assert all(event.start_time >= NOW for event in feed.new_events)
