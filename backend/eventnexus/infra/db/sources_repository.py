from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import insert, select, update
from sqlalchemy.engine import Engine

from eventnexus.domain.models import EventSource

from .tables import event_sources_table

# slug -> display name
DEFAULT_SOURCES = {
    "eventbrite": "Eventbrite",
    "meetup": "Meetup",
    "luma": "Luma",
    "site": "Web Sites",
}


def _source_from_row(row) -> EventSource:
    return EventSource(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        is_active=bool(row["is_active"]),
        api_config=row.get("api_config"),
    )


class EventSourcesRepository:
    def __init__(self, engine: Engine):
        if engine is None:
            raise ValueError("engine is required")
        self.engine = engine

    def list_active_sources(self) -> List[EventSource]:
        with self.engine.begin() as conn:
            rows = conn.execute(
                select(event_sources_table)
                .where(event_sources_table.c.is_active.is_(True))
                .order_by(event_sources_table.c.id)
            ).mappings().all()
        return [_source_from_row(row) for row in rows]

    def get_by_slug(self, slug: str) -> Optional[EventSource]:
        with self.engine.begin() as conn:
            row = conn.execute(
                select(event_sources_table).where(event_sources_table.c.slug == slug)
            ).mappings().first()
        return _source_from_row(row) if row else None

    def ensure_source(self, slug: str, name: Optional[str] = None, *, is_active: bool = True) -> int:
        now = datetime.now(timezone.utc)
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(event_sources_table.c.id).where(event_sources_table.c.slug == slug)
            ).scalar_one_or_none()
            if existing is not None:
                conn.execute(
                    update(event_sources_table)
                    .where(event_sources_table.c.id == existing)
                    .values(is_active=is_active, updated_at=now)
                )
                return existing
            result = conn.execute(
                insert(event_sources_table).values(
                    slug=slug,
                    name=name or DEFAULT_SOURCES.get(slug, slug.title()),
                    is_active=is_active,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def seed_defaults(self) -> List[int]:
        return [self.ensure_source(slug, name) for slug, name in DEFAULT_SOURCES.items()]
