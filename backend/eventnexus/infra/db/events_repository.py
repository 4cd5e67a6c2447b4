from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Connection, Engine

from eventnexus.domain.models import Event, NormalizedEvent, ensure_utc

from .tables import events_table

EVENT_COLUMNS = [
    "source_id",
    "external_id",
    "title",
    "description",
    "event_url",
    "image_url",
    "start_time",
    "end_time",
    "location_name",
    "location_lat",
    "location_lng",
    "is_virtual",
    "category",
    "tags",
    "raw_data",
]


def event_row_from_normalized(event: NormalizedEvent, source_id: int) -> Dict[str, Any]:
    """Storage shape for ``event`` bound to the catalog row ``source_id``."""
    return {
        "source_id": source_id,
        "external_id": event.external_id,
        "title": event.title,
        "description": event.description,
        "event_url": event.url,
        "image_url": event.image_url,
        "start_time": event.start_time,
        "end_time": event.end_time,
        "location_name": event.location.name,
        "location_lat": event.location.lat,
        "location_lng": event.location.lng,
        "is_virtual": event.location.is_virtual,
        "category": event.category,
        "tags": list(event.tags),
        "raw_data": _json_safe(event.raw_data),
    }


def event_from_row(row) -> Event:
    return Event(
        id=row["id"],
        source_id=row["source_id"],
        external_id=row["external_id"],
        title=row["title"],
        description=row.get("description"),
        url=row.get("event_url"),
        image_url=row.get("image_url"),
        start_time=ensure_utc(row["start_time"]),
        end_time=ensure_utc(row["end_time"]) if row.get("end_time") else None,
        location_name=row.get("location_name"),
        location_lat=row.get("location_lat"),
        location_lng=row.get("location_lng"),
        is_virtual=bool(row.get("is_virtual")),
        category=row.get("category"),
        tags=tuple(row.get("tags") or ()),
        fetched_at=ensure_utc(row["fetched_at"]) if row.get("fetched_at") else None,
    )


class EventsRepository:
    def __init__(self, engine: Engine):
        if engine is None:
            raise ValueError("engine is required")
        self.engine = engine

    def upsert_events(self, rows: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Insert or update ``rows`` keyed on (source_id, external_id).

        Returns one stored row per unique key in the batch, in input order.
        """
        stored: Dict[tuple, Dict[str, Any]] = {}
        with self.engine.begin() as conn:
            for row in rows:
                resolved = {col: row.get(col) for col in EVENT_COLUMNS}
                for col in ("start_time", "end_time"):
                    if resolved[col] is not None:
                        resolved[col] = ensure_utc(resolved[col])
                now = datetime.now(timezone.utc)
                existing_id = self._locate_event(conn, resolved["source_id"], resolved["external_id"])
                if existing_id is not None:
                    conn.execute(
                        update(events_table)
                        .where(events_table.c.id == existing_id)
                        .values(**resolved, fetched_at=now, updated_at=now)
                    )
                    event_id = existing_id
                else:
                    result = conn.execute(
                        insert(events_table).values(**resolved, fetched_at=now, created_at=now, updated_at=now)
                    )
                    event_id = result.inserted_primary_key[0]
                stored[(resolved["source_id"], resolved["external_id"])] = {**resolved, "id": event_id}
        return list(stored.values())

    def get_events(self, *, limit: Optional[int] = None) -> List[Event]:
        stmt = select(events_table).order_by(events_table.c.start_time, events_table.c.id)
        if limit:
            stmt = stmt.limit(limit)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [event_from_row(row) for row in rows]

    def get_upcoming_events(self, now: datetime, *, limit: Optional[int] = None) -> List[Event]:
        stmt = (
            select(events_table)
            .where(events_table.c.start_time >= ensure_utc(now))
            .order_by(events_table.c.start_time, events_table.c.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [event_from_row(row) for row in rows]

    def get_events_by_ids(self, event_ids: Iterable[int]) -> Dict[int, Event]:
        ids = list(event_ids)
        if not ids:
            return {}
        with self.engine.begin() as conn:
            rows = conn.execute(select(events_table).where(events_table.c.id.in_(ids))).mappings().all()
        return {row["id"]: event_from_row(row) for row in rows}

    def count_events(self, source_id: Optional[int] = None) -> int:
        stmt = select(func.count()).select_from(events_table)
        if source_id is not None:
            stmt = stmt.where(events_table.c.source_id == source_id)
        with self.engine.begin() as conn:
            return conn.execute(stmt).scalar_one()

    @staticmethod
    def _locate_event(conn: Connection, source_id: int, external_id: str) -> Optional[int]:
        stmt = select(events_table.c.id).where(
            (events_table.c.source_id == source_id) & (events_table.c.external_id == external_id)
        )
        return conn.execute(stmt).scalar_one_or_none()


def _json_safe(value):
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    return str(value)
