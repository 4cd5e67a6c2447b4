from __future__ import annotations

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from eventnexus.api.deps import get_recommendation_engine
from eventnexus.domain.models import Event, Recommendation
from eventnexus.services.recommendations import RecommendationEngine, RecommendationOptions

router = APIRouter(tags=["recommendations"])


class FeedbackIn(BaseModel):
    user_id: str
    event_id: int
    feedback: Literal["helpful", "not_helpful", "dismissed"]


@router.get("/recommendations")
def list_recommendations(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(20, ge=1, le=100),
    algorithm: Literal["content-based", "collaborative", "hybrid"] = "hybrid",
    refresh: bool = False,
    feed: bool = False,
    recommender: RecommendationEngine = Depends(get_recommendation_engine),
):
    options = RecommendationOptions(limit=limit, algorithm=algorithm, force_refresh=refresh)
    if feed:
        result = recommender.get_personalized_feed(user_id, options)
        recommended = [_recommendation_out(rec) for rec in result.recommended]
        new_events = [_event_out(event) for event in result.new_events]
        return {
            "success": True,
            "data": {
                "recommended": recommended,
                "new": new_events,
                "algorithm": result.algorithm,
                "total": len(recommended) + len(new_events),
            },
        }
    result = recommender.get_recommendations_for_user(user_id, options)
    return {
        "success": True,
        "data": {
            "recommendations": [_recommendation_out(rec) for rec in result.recommendations],
            "algorithm": result.algorithm,
            "generated_at": result.generated_at.isoformat(),
            "cached": result.cached,
            "total": len(result.recommendations),
        },
    }


@router.delete("/recommendations")
def clear_recommendations(
    user_id: str = Query(..., min_length=1),
    recommender: RecommendationEngine = Depends(get_recommendation_engine),
):
    deleted = recommender.clear_user_recommendations(user_id)
    return {"success": True, "data": {"message": "Recommendations cleared", "deleted": deleted}}


@router.put("/recommendations/feedback")
def record_feedback(
    payload: FeedbackIn,
    recommender: RecommendationEngine = Depends(get_recommendation_engine),
):
    recommender.record_recommendation_feedback(payload.user_id, payload.event_id, payload.feedback)
    return {"success": True, "data": {"message": "Feedback recorded"}}


def _recommendation_out(rec: Recommendation) -> dict:
    return {
        "event_id": rec.event_id,
        "score": rec.score,
        "reason": rec.reason,
        "algorithm": rec.algorithm,
        "created_at": rec.created_at.isoformat(),
        "expires_at": rec.expires_at.isoformat(),
        "event": _event_out(rec.event) if rec.event else None,
    }


def _event_out(event: Event) -> dict:
    return {
        "id": event.id,
        "source_id": event.source_id,
        "external_id": event.external_id,
        "title": event.title,
        "description": event.description,
        "url": event.url,
        "image_url": event.image_url,
        "start_time": event.start_time.isoformat(),
        "end_time": event.end_time.isoformat() if event.end_time else None,
        "location_name": event.location_name,
        "location_lat": event.location_lat,
        "location_lng": event.location_lng,
        "is_virtual": event.is_virtual,
        "category": event.category,
        "tags": list(event.tags),
    }
