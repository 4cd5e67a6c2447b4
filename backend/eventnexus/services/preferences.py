from __future__ import annotations

import logging
from typing import List, Optional

from eventnexus.domain.models import INTERACTION_TYPES, UserInteraction, UserPreference
from eventnexus.domain.scoring import TIME_BUCKETS
from eventnexus.infra.db.users_repository import UsersRepository

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class UserPreferencesService:
    def __init__(self, users_repo: UsersRepository):
        if users_repo is None:
            raise ValueError("users_repo is required")
        self.users_repo = users_repo

    def get_preferences(self, user_id: str) -> Optional[UserPreference]:
        return self.users_repo.get_preferences(user_id)

    def upsert_preferences(self, preference: UserPreference) -> UserPreference:
        if not preference.user_id:
            raise ValueError("user_id is required")
        if preference.location_radius_km <= 0:
            raise ValueError("location_radius_km must be > 0")
        if (preference.location_lat is None) != (preference.location_lng is None):
            raise ValueError("location_lat and location_lng must be set together")
        unknown_days = [day for day in preference.preferred_days if day.lower() not in WEEKDAYS]
        if unknown_days:
            raise ValueError(f"Unknown preferred_days: {', '.join(unknown_days)}")
        unknown_slots = [slot for slot in preference.preferred_times if slot.lower() not in TIME_BUCKETS]
        if unknown_slots:
            raise ValueError(f"Unknown preferred_times: {', '.join(unknown_slots)}")
        return self.users_repo.upsert_preferences(preference)

    def record_interaction(
        self,
        user_id: str,
        event_id: int,
        interaction_type: str,
        metadata: Optional[dict] = None,
    ) -> UserInteraction:
        if interaction_type not in INTERACTION_TYPES:
            raise ValueError(f"interaction_type must be one of {', '.join(INTERACTION_TYPES)}")
        return self.users_repo.record_interaction(user_id, event_id, interaction_type, metadata)

    def get_bookmarked_event_ids(self, user_id: str) -> List[int]:
        # latest bookmark row per event decides; {"removed": true} clears it
        state: dict[int, bool] = {}
        for item in self.users_repo.get_interactions(user_id, "bookmark"):
            state.pop(item.event_id, None)
            state[item.event_id] = not (item.metadata or {}).get("removed", False)
        return [event_id for event_id, active in state.items() if active]

    def is_bookmarked(self, user_id: str, event_id: int) -> bool:
        return event_id in self.get_bookmarked_event_ids(user_id)

    def toggle_bookmark(self, user_id: str, event_id: int) -> bool:
        """Flip the bookmark state; returns True when the event ends up bookmarked."""
        bookmarked = self.is_bookmarked(user_id, event_id)
        metadata = {"removed": True} if bookmarked else None
        self.users_repo.record_interaction(user_id, event_id, "bookmark", metadata)
        logger.info("Bookmark %s for %s on event %s", "removed" if bookmarked else "added", user_id, event_id)
        return not bookmarked

    def hide_event(self, user_id: str, event_id: int) -> UserInteraction:
        return self.users_repo.record_interaction(user_id, event_id, "hide")
