from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, insert, select, update
from sqlalchemy.engine import Engine

from eventnexus.domain.models import Recommendation, ensure_utc

from .events_repository import event_from_row
from .tables import events_table, recommendations_table


class RecommendationsRepository:
    def __init__(self, engine: Engine):
        if engine is None:
            raise ValueError("engine is required")
        self.engine = engine

    def upsert_recommendations(self, recommendations: Sequence[Recommendation]) -> int:
        """Insert or replace rows keyed on (user_id, event_id). Returns rows written."""
        written = 0
        with self.engine.begin() as conn:
            for rec in recommendations:
                values = {
                    "score": rec.score,
                    "reason": rec.reason,
                    "algorithm": rec.algorithm,
                    "created_at": ensure_utc(rec.created_at),
                    "expires_at": ensure_utc(rec.expires_at),
                }
                existing = conn.execute(
                    select(recommendations_table.c.id).where(
                        (recommendations_table.c.user_id == rec.user_id)
                        & (recommendations_table.c.event_id == rec.event_id)
                    )
                ).scalar_one_or_none()
                if existing is not None:
                    conn.execute(
                        update(recommendations_table).where(recommendations_table.c.id == existing).values(**values)
                    )
                else:
                    conn.execute(
                        insert(recommendations_table).values(user_id=rec.user_id, event_id=rec.event_id, **values)
                    )
                written += 1
        return written

    def list_valid(self, user_id: str, now: datetime, *, limit: Optional[int] = None) -> List[Recommendation]:
        """Non-expired recommendations for ``user_id`` joined with their events, best first."""
        join_stmt = recommendations_table.join(events_table, recommendations_table.c.event_id == events_table.c.id)
        stmt = (
            select(
                events_table,
                recommendations_table.c.user_id.label("rec_user_id"),
                recommendations_table.c.score.label("rec_score"),
                recommendations_table.c.reason.label("rec_reason"),
                recommendations_table.c.algorithm.label("rec_algorithm"),
                recommendations_table.c.created_at.label("rec_created_at"),
                recommendations_table.c.expires_at.label("rec_expires_at"),
            )
            .select_from(join_stmt)
            .where(
                recommendations_table.c.user_id == user_id,
                recommendations_table.c.expires_at > ensure_utc(now),
            )
            .order_by(recommendations_table.c.score.desc(), recommendations_table.c.id)
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.engine.begin() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [
            Recommendation(
                user_id=row["rec_user_id"],
                event_id=row["id"],
                score=row["rec_score"],
                reason=row["rec_reason"] or "",
                algorithm=row["rec_algorithm"],
                created_at=ensure_utc(row["rec_created_at"]),
                expires_at=ensure_utc(row["rec_expires_at"]),
                event=event_from_row(row),
            )
            for row in rows
        ]

    def delete_for_user(self, user_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(delete(recommendations_table).where(recommendations_table.c.user_id == user_id))
        return result.rowcount or 0
