from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable, Dict, List, Optional

from eventnexus.domain.models import (
    ALGORITHMS,
    FEEDBACK_VALUES,
    POSITIVE_INTERACTIONS,
    Event,
    Recommendation,
    RecommendationScore,
    UserPreference,
)
from eventnexus.domain.scoring import INCLUSION_FLOOR, NEUTRAL_SCORE, content_score
from eventnexus.infra.db.events_repository import EventsRepository
from eventnexus.infra.db.recommendations_repository import RecommendationsRepository
from eventnexus.infra.db.users_repository import UsersRepository

logger = logging.getLogger(__name__)

CACHE_TTL = timedelta(days=7)
CANDIDATE_LIMIT = 50
CONTENT_BLEND = 0.6
COLLABORATIVE_BLEND = 0.4
# Similarity sums above this are treated as a perfect collaborative match.
COLLABORATIVE_CEILING = 8.0
INTERACTION_BONUS = {"bookmark": 2.0, "rsvp": 1.5}
FEED_RECOMMENDED = 10

REASON_COLLABORATIVE = "popular with users like you"
REASON_UPCOMING = "upcoming event"


@dataclass
class RecommendationOptions:
    limit: int = 20
    algorithm: str = "hybrid"
    force_refresh: bool = False
    exclude_seen: bool = False


@dataclass
class RecommendationResult:
    recommendations: List[Recommendation]
    algorithm: str
    generated_at: datetime
    cached: bool = False


@dataclass
class PersonalizedFeed:
    recommended: List[Recommendation]
    new_events: List[Event] = field(default_factory=list)
    algorithm: str = "hybrid"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ranked(scores: List[RecommendationScore], limit: int) -> List[RecommendationScore]:
    # sorted() is stable: equal scores keep candidate order
    return sorted(scores, key=lambda item: item.score, reverse=True)[:limit]


class RecommendationEngine:
    """Scores persisted events for a user and caches the result for seven days."""

    def __init__(
        self,
        events_repo: EventsRepository,
        users_repo: UsersRepository,
        recommendations_repo: RecommendationsRepository,
        *,
        clock: Callable[[], datetime] = _utcnow,
        tz: tzinfo = timezone.utc,
    ):
        if events_repo is None or users_repo is None or recommendations_repo is None:
            raise ValueError("events_repo, users_repo and recommendations_repo are required")
        self.events_repo = events_repo
        self.users_repo = users_repo
        self.recommendations_repo = recommendations_repo
        self._clock = clock
        self.tz = tz

    def get_recommendations_for_user(
        self,
        user_id: str,
        options: Optional[RecommendationOptions] = None,
    ) -> RecommendationResult:
        options = options or RecommendationOptions()
        if options.algorithm not in ALGORITHMS:
            raise ValueError(f"Unknown algorithm '{options.algorithm}'")
        if options.limit <= 0:
            raise ValueError("limit must be > 0")
        now = self._clock()

        if not options.force_refresh:
            cached = self.recommendations_repo.list_valid(user_id, now)
            if cached and len(cached) >= options.limit:
                return RecommendationResult(
                    recommendations=cached[: options.limit],
                    algorithm=cached[0].algorithm,
                    generated_at=now,
                    cached=True,
                )

        scores = self.generate_scores(user_id, options, now=now)
        if not scores:
            return RecommendationResult(recommendations=[], algorithm=options.algorithm, generated_at=now)

        expires_at = now + CACHE_TTL
        records = [
            Recommendation(
                user_id=user_id,
                event_id=item.event_id,
                score=item.score,
                reason=item.reason,
                algorithm=item.algorithm,
                created_at=now,
                expires_at=expires_at,
            )
            for item in scores
        ]
        self.recommendations_repo.upsert_recommendations(records)
        events = self.events_repo.get_events_by_ids(item.event_id for item in records)
        logger.info("Generated %d %s recommendations for %s", len(records), options.algorithm, user_id)
        return RecommendationResult(
            recommendations=[replace(rec, event=events.get(rec.event_id)) for rec in records][: options.limit],
            algorithm=options.algorithm,
            generated_at=now,
        )

    def generate_scores(
        self,
        user_id: str,
        options: RecommendationOptions,
        *,
        now: Optional[datetime] = None,
    ) -> List[RecommendationScore]:
        now = now or self._clock()
        preferences = self.users_repo.get_preferences(user_id)
        if options.algorithm == "hybrid" and preferences is not None:
            return self.hybrid(user_id, preferences, options, now=now)
        if options.algorithm == "collaborative":
            return self.collaborative_filtering(user_id, limit=options.limit)
        if preferences is not None:
            return self.content_based_filtering(user_id, preferences, options, now=now, limit=options.limit)
        return self._upcoming_fallback(now, options.limit)

    def content_based_filtering(
        self,
        user_id: str,
        preferences: UserPreference,
        options: RecommendationOptions,
        *,
        now: Optional[datetime] = None,
        limit: int = CANDIDATE_LIMIT,
    ) -> List[RecommendationScore]:
        now = now or self._clock()
        seen: set[int] = set()
        if options.exclude_seen:
            seen = {item.event_id for item in self.users_repo.get_interactions(user_id)}
        scores: List[RecommendationScore] = []
        for event in self.events_repo.get_events():
            if event.id in seen:
                continue
            score, reason = content_score(event, preferences, now=now, tz=self.tz)
            if score > INCLUSION_FLOOR:
                scores.append(RecommendationScore(event.id, score, reason, "content-based"))
        return _ranked(scores, limit)

    def collaborative_filtering(self, user_id: str, *, limit: int = CANDIDATE_LIMIT) -> List[RecommendationScore]:
        """Events engaged with by users who share this user's positive interactions."""
        interactions = self.users_repo.get_interactions(user_id)
        if not interactions:
            return []
        positive_ids = list(
            OrderedDict.fromkeys(
                item.event_id
                for item in interactions
                if item.interaction_type in POSITIVE_INTERACTIONS and not (item.metadata or {}).get("removed")
            )
        )
        if not positive_ids:
            return []
        seen = {item.event_id for item in interactions}

        shared: Dict[str, set[int]] = OrderedDict()
        for item in self.users_repo.interactions_for_events(positive_ids, exclude_user=user_id):
            shared.setdefault(item.user_id, set()).add(item.event_id)
        if not shared:
            return []
        similarity = {other: len(events) for other, events in shared.items()}

        totals: Dict[int, float] = OrderedDict()
        for item in self.users_repo.interactions_by_users(similarity, exclude_events=seen):
            bonus = INTERACTION_BONUS.get(item.interaction_type, 0.0)
            totals[item.event_id] = totals.get(item.event_id, 0.0) + similarity[item.user_id] + bonus
        scores = [
            RecommendationScore(event_id, min(1.0, total / COLLABORATIVE_CEILING), REASON_COLLABORATIVE, "collaborative")
            for event_id, total in totals.items()
        ]
        return _ranked(scores, limit)

    def hybrid(
        self,
        user_id: str,
        preferences: UserPreference,
        options: RecommendationOptions,
        *,
        now: Optional[datetime] = None,
    ) -> List[RecommendationScore]:
        content = self.content_based_filtering(user_id, preferences, options, now=now, limit=CANDIDATE_LIMIT)
        collaborative = self.collaborative_filtering(user_id, limit=CANDIDATE_LIMIT)
        return blend(content, collaborative, limit=options.limit)

    def record_recommendation_feedback(self, user_id: str, event_id: int, feedback: str) -> None:
        if feedback not in FEEDBACK_VALUES:
            raise ValueError(f"feedback must be one of {', '.join(FEEDBACK_VALUES)}")
        # stored as a plain view so it never counts as a positive signal
        self.users_repo.record_interaction(
            user_id,
            event_id,
            "view",
            {"recommendation_feedback": feedback},
            created_at=self._clock(),
        )

    def clear_user_recommendations(self, user_id: str) -> int:
        deleted = self.recommendations_repo.delete_for_user(user_id)
        logger.info("Cleared %d cached recommendations for %s", deleted, user_id)
        return deleted

    def get_personalized_feed(
        self,
        user_id: str,
        options: Optional[RecommendationOptions] = None,
    ) -> PersonalizedFeed:
        options = options or RecommendationOptions()
        result = self.get_recommendations_for_user(user_id, replace(options, limit=FEED_RECOMMENDED))
        recommended_ids = {rec.event_id for rec in result.recommendations}
        upcoming = [
            event
            for event in self.events_repo.get_upcoming_events(self._clock())
            if event.id not in recommended_ids
        ]
        return PersonalizedFeed(
            recommended=result.recommendations,
            new_events=upcoming[: options.limit],
            algorithm=result.algorithm,
        )

    def _upcoming_fallback(self, now: datetime, limit: int) -> List[RecommendationScore]:
        return [
            RecommendationScore(event.id, NEUTRAL_SCORE, REASON_UPCOMING, "content-based")
            for event in self.events_repo.get_upcoming_events(now, limit=limit)
        ]


def blend(
    content: List[RecommendationScore],
    collaborative: List[RecommendationScore],
    *,
    limit: int,
) -> List[RecommendationScore]:
    """Weighted merge of content-based (x0.6) and collaborative (x0.4) candidates."""
    merged: Dict[int, RecommendationScore] = OrderedDict()
    for item in content:
        merged[item.event_id] = replace(item, score=item.score * CONTENT_BLEND)
    for item in collaborative:
        existing = merged.get(item.event_id)
        if existing is None:
            merged[item.event_id] = replace(item, score=item.score * COLLABORATIVE_BLEND)
            continue
        existing.score = min(1.0, existing.score + item.score * COLLABORATIVE_BLEND)
        existing.reason = f"{existing.reason}, {item.reason}"
        existing.algorithm = "hybrid"
    return _ranked(list(merged.values()), limit)
