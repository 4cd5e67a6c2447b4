import asyncio
from typing import List, Optional

import typer

from eventnexus.infra.database import resolve_engine
from eventnexus.infra.db.sources_repository import EventSourcesRepository
from eventnexus.jobs.ingest_events import build_filters, build_registry, ingest_events
from eventnexus.jobs.refresh_recommendations import build_recommendation_engine
from eventnexus.services.recommendations import RecommendationOptions

app = typer.Typer(help="EventNexus: event ingestion and recommendations")


@app.command("ingest")
def cli_ingest(
    source: Optional[List[str]] = typer.Option(None, "--source", help="Source slug, repeatable"),
    city: Optional[str] = typer.Option(None, help="City name"),
    lat: Optional[float] = typer.Option(None, help="Latitude"),
    lng: Optional[float] = typer.Option(None, help="Longitude"),
    radius_km: float = typer.Option(50.0, help="Search radius in km"),
    limit: Optional[int] = typer.Option(None, help="Max events per source"),
    continue_on_error: bool = typer.Option(False, help="Keep going after a failing source"),
):
    try:
        filters = build_filters(city=city, lat=lat, lng=lng, radius_km=radius_km, limit=limit)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    result = ingest_events(source, filters=filters, continue_on_error=continue_on_error)
    typer.echo("source\tsuccess\tfetched\tstored\terrors")
    for item in result.results:
        typer.echo(
            f"{item.source}\t{item.success}\t{item.events_fetched}\t{item.events_stored}\t{'; '.join(item.errors)}"
        )
    if not result.success:
        raise typer.Exit(code=1)


@app.command("health")
def cli_health():
    registry = build_registry()
    if not registry.get_all_plugins():
        typer.echo("No plugins configured")
        raise typer.Exit(code=0)
    statuses = asyncio.run(registry.get_health_status())
    typer.echo("source\thealthy\tresponse_ms\terror")
    for source, status in statuses.items():
        typer.echo(f"{source}\t{status.is_healthy}\t{status.response_time_ms or 0:.0f}\t{status.last_error or ''}")


@app.command("recommend")
def cli_recommend(
    user_id: str = typer.Option(..., help="User id"),
    limit: int = typer.Option(20, help="Number of recommendations"),
    algorithm: str = typer.Option("hybrid", help="content-based | collaborative | hybrid"),
    refresh: bool = typer.Option(False, help="Ignore cached recommendations"),
):
    recommender = build_recommendation_engine(resolve_engine())
    options = RecommendationOptions(limit=limit, algorithm=algorithm, force_refresh=refresh)
    try:
        result = recommender.get_recommendations_for_user(user_id, options)
    except ValueError as exc:
        raise typer.BadParameter(str(exc))
    if not result.recommendations:
        typer.echo("No recommendations for this user")
        raise typer.Exit(code=0)
    typer.echo("event_id\tscore\ttitle\treason")
    for rec in result.recommendations:
        title = rec.event.title if rec.event else ""
        typer.echo(f"{rec.event_id}\t{rec.score:.3f}\t{title}\t{rec.reason}")


@app.command("clear-recommendations")
def cli_clear_recommendations(user_id: str = typer.Option(..., help="User id")):
    recommender = build_recommendation_engine(resolve_engine())
    deleted = recommender.clear_user_recommendations(user_id)
    typer.echo(f"Deleted {deleted} recommendations for {user_id}")


@app.command("seed-sources")
def cli_seed_sources():
    repo = EventSourcesRepository(resolve_engine())
    ids = repo.seed_defaults()
    typer.echo(f"Seeded {len(ids)} event sources")


if __name__ == "__main__":
    app()
