from __future__ import annotations

from typing import Dict, List, Optional

import typer
from sqlalchemy.engine import Engine

from eventnexus.config import load_settings
from eventnexus.infra.database import display_url, resolve_engine
from eventnexus.infra.db.events_repository import EventsRepository
from eventnexus.infra.db.recommendations_repository import RecommendationsRepository
from eventnexus.infra.db.users_repository import UsersRepository
from eventnexus.services.recommendations import RecommendationEngine, RecommendationOptions

app = typer.Typer(help="Regenerate cached recommendations")


def build_recommendation_engine(engine: Engine, **kwargs) -> RecommendationEngine:
    kwargs.setdefault("tz", load_settings().tzinfo)
    return RecommendationEngine(
        EventsRepository(engine),
        UsersRepository(engine),
        RecommendationsRepository(engine),
        **kwargs,
    )


def refresh_recommendations(
    user_ids: Optional[List[str]] = None,
    *,
    algorithm: str = "hybrid",
    limit: int = 20,
    engine=None,
    database_url: Optional[str] = None,
) -> Dict[str, int]:
    """Force-regenerates recommendations; defaults to every user with stored preferences."""
    engine = resolve_engine(engine, database_url)
    recommender = build_recommendation_engine(engine)
    if not user_ids:
        user_ids = UsersRepository(engine).list_user_ids()
    options = RecommendationOptions(limit=limit, algorithm=algorithm, force_refresh=True)
    stats: Dict[str, int] = {}
    for user_id in user_ids:
        result = recommender.get_recommendations_for_user(user_id, options)
        stats[user_id] = len(result.recommendations)
    _log_summary(algorithm, stats, engine)
    return stats


@app.command()
def run(
    user: Optional[List[str]] = typer.Option(None, "--user", help="User id, repeatable"),
    algorithm: str = typer.Option("hybrid", help="content-based | collaborative | hybrid"),
    limit: int = typer.Option(20, help="Recommendations per user"),
):
    """CLI entrypoint for refreshing recommendations."""
    refresh_recommendations(user, algorithm=algorithm, limit=limit)


def _log_summary(algorithm: str, stats: Dict[str, int], engine: Engine) -> None:
    db_url = display_url(engine.url)
    print(
        f"[refresh_recommendations] db={db_url} algorithm={algorithm} users={len(stats)} "
        f"recommendations={sum(stats.values())}"
    )


if __name__ == "__main__":
    app()
