from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from eventnexus.domain.models import UserInteraction, UserPreference, ensure_utc

from .tables import user_interactions_table, user_preferences_table

DEFAULT_RADIUS_KM = 25.0


def _preference_from_row(row) -> UserPreference:
    radius = row.get("location_radius_km")
    return UserPreference(
        user_id=row["user_id"],
        interests=list(row.get("interests") or []),
        location_lat=row.get("location_lat"),
        location_lng=row.get("location_lng"),
        location_radius_km=radius if radius is not None else DEFAULT_RADIUS_KM,
        preferred_days=list(row.get("preferred_days") or []),
        preferred_times=list(row.get("preferred_times") or []),
    )


def _interaction_from_row(row) -> UserInteraction:
    return UserInteraction(
        id=row["id"],
        user_id=row["user_id"],
        event_id=row["event_id"],
        interaction_type=row["interaction_type"],
        metadata=row["metadata"],
        created_at=ensure_utc(row["created_at"]),
    )


class UsersRepository:
    """Preferences (one row per user) and the append-only interaction log."""

    def __init__(self, engine: Engine):
        if engine is None:
            raise ValueError("engine is required")
        self.engine = engine

    def get_preferences(self, user_id: str) -> Optional[UserPreference]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(user_preferences_table).where(user_preferences_table.c.user_id == user_id)
            ).mappings().first()
        return _preference_from_row(row) if row else None

    def list_user_ids(self) -> List[str]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(user_preferences_table.c.user_id).order_by(user_preferences_table.c.user_id)
            ).all()
        return [row[0] for row in rows]

    def upsert_preferences(self, preference: UserPreference) -> UserPreference:
        values = {
            "interests": list(preference.interests),
            "location_lat": preference.location_lat,
            "location_lng": preference.location_lng,
            "location_radius_km": preference.location_radius_km,
            "preferred_days": [day.lower() for day in preference.preferred_days],
            "preferred_times": [slot.lower() for slot in preference.preferred_times],
        }
        now = datetime.now(timezone.utc)
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(user_preferences_table.c.id).where(user_preferences_table.c.user_id == preference.user_id)
            ).scalar_one_or_none()
            if existing is not None:
                conn.execute(
                    update(user_preferences_table)
                    .where(user_preferences_table.c.id == existing)
                    .values(**values, updated_at=now)
                )
            else:
                conn.execute(
                    insert(user_preferences_table).values(
                        user_id=preference.user_id, **values, created_at=now, updated_at=now
                    )
                )
        return UserPreference(user_id=preference.user_id, **values)

    def record_interaction(
        self,
        user_id: str,
        event_id: int,
        interaction_type: str,
        metadata: Optional[dict] = None,
        *,
        created_at: Optional[datetime] = None,
    ) -> UserInteraction:
        created = ensure_utc(created_at or datetime.now(timezone.utc))
        with self.engine.begin() as conn:
            result = conn.execute(
                insert(user_interactions_table).values(
                    {
                        "user_id": user_id,
                        "event_id": event_id,
                        "interaction_type": interaction_type,
                        "metadata": metadata,
                        "created_at": created,
                    }
                )
            )
            new_id = result.inserted_primary_key[0]
        return UserInteraction(
            id=new_id,
            user_id=user_id,
            event_id=event_id,
            interaction_type=interaction_type,
            metadata=metadata,
            created_at=created,
        )

    def get_interactions(self, user_id: str, interaction_type: Optional[str] = None) -> List[UserInteraction]:
        stmt = select(user_interactions_table).where(user_interactions_table.c.user_id == user_id)
        if interaction_type:
            stmt = stmt.where(user_interactions_table.c.interaction_type == interaction_type)
        stmt = stmt.order_by(user_interactions_table.c.created_at, user_interactions_table.c.id)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_interaction_from_row(row) for row in rows]

    def interactions_for_events(self, event_ids: Iterable[int], *, exclude_user: Optional[str] = None) -> List[UserInteraction]:
        ids = list(event_ids)
        if not ids:
            return []
        stmt = select(user_interactions_table).where(user_interactions_table.c.event_id.in_(ids))
        if exclude_user is not None:
            stmt = stmt.where(user_interactions_table.c.user_id != exclude_user)
        stmt = stmt.order_by(user_interactions_table.c.id)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_interaction_from_row(row) for row in rows]

    def interactions_by_users(self, user_ids: Iterable[str], *, exclude_events: Iterable[int] = ()) -> List[UserInteraction]:
        ids = list(user_ids)
        if not ids:
            return []
        stmt = select(user_interactions_table).where(user_interactions_table.c.user_id.in_(ids))
        excluded = list(exclude_events)
        if excluded:
            stmt = stmt.where(user_interactions_table.c.event_id.not_in(excluded))
        stmt = stmt.order_by(user_interactions_table.c.id)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_interaction_from_row(row) for row in rows]
