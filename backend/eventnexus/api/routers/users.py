from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from eventnexus.api.deps import get_preferences_service
from eventnexus.domain.models import UserPreference
from eventnexus.services.preferences import UserPreferencesService

router = APIRouter(prefix="/user", tags=["users"])


class PreferencesIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    interests: List[str] = Field(default_factory=list)
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_radius_km: float = 25.0
    preferred_days: List[str] = Field(default_factory=list)
    preferred_times: List[str] = Field(default_factory=list)


class InteractionIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    event_id: int
    interaction_type: Literal["view", "click", "rsvp", "hide", "bookmark"]
    metadata: Optional[dict] = None


@router.get("/preferences")
def get_preferences(
    user_id: str = Query(..., min_length=1),
    service: UserPreferencesService = Depends(get_preferences_service),
):
    preference = service.get_preferences(user_id)
    return {"success": True, "data": _preferences_out(preference) if preference else None}


@router.put("/preferences")
def put_preferences(
    payload: PreferencesIn,
    service: UserPreferencesService = Depends(get_preferences_service),
):
    saved = service.upsert_preferences(UserPreference(**payload.model_dump()))
    return {"success": True, "data": _preferences_out(saved)}


@router.post("/interactions")
def record_interaction(
    payload: InteractionIn,
    service: UserPreferencesService = Depends(get_preferences_service),
):
    # bookmarks toggle; a second bookmark on the same event removes it
    if payload.interaction_type == "bookmark":
        bookmarked = service.toggle_bookmark(payload.user_id, payload.event_id)
        return {"success": True, "data": {"event_id": payload.event_id, "bookmarked": bookmarked}}
    if payload.interaction_type == "hide":
        service.hide_event(payload.user_id, payload.event_id)
    else:
        service.record_interaction(payload.user_id, payload.event_id, payload.interaction_type, payload.metadata)
    return {"success": True, "data": {"message": "Interaction recorded"}}


@router.get("/bookmarks")
def list_bookmarks(
    user_id: str = Query(..., min_length=1),
    service: UserPreferencesService = Depends(get_preferences_service),
):
    return {"success": True, "data": {"event_ids": service.get_bookmarked_event_ids(user_id)}}


def _preferences_out(preference: UserPreference) -> dict:
    return {
        "user_id": preference.user_id,
        "interests": list(preference.interests),
        "location_lat": preference.location_lat,
        "location_lng": preference.location_lng,
        "location_radius_km": preference.location_radius_km,
        "preferred_days": list(preference.preferred_days),
        "preferred_times": list(preference.preferred_times),
    }
