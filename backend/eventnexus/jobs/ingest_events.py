from __future__ import annotations

import asyncio
from typing import List, Optional

import typer
from sqlalchemy.engine import Engine

from eventnexus.config import Settings, load_settings
from eventnexus.domain.models import EventFilters, GeoFilter
from eventnexus.hub.plugin_registry import PluginRegistry
from eventnexus.infra.database import display_url, resolve_engine
from eventnexus.infra.db.events_repository import EventsRepository
from eventnexus.infra.db.sources_repository import EventSourcesRepository
from eventnexus.providers.base import PluginConfig
from eventnexus.providers.eventbrite import EventbritePlugin
from eventnexus.providers.luma import WEB_READER_URL, LumaWebPlugin
from eventnexus.providers.meetup import MeetupPlugin
from eventnexus.providers.meetup_web import MeetupWebPlugin
from eventnexus.providers.site_scraper import DEFAULT_CARD_SELECTOR, SiteScraperPlugin, SiteSelectors
from eventnexus.services.ingestion import EventIngestionService, IngestionConfig, IngestionResult

app = typer.Typer(help="Fetch events from every configured source into the database")


def build_registry(settings: Optional[Settings] = None) -> PluginRegistry:
    """Registry with one plugin per source the environment enables."""
    settings = settings or load_settings()
    registry = PluginRegistry()

    def _config(**kwargs) -> PluginConfig:
        return PluginConfig(timeout=settings.plugin_timeout, max_retries=settings.plugin_max_retries, **kwargs)

    if settings.eventbrite_token:
        registry.register(EventbritePlugin(_config(oauth_token=settings.eventbrite_token)))
    # the GraphQL API and the public pages share the "meetup" slug
    if settings.meetup_token:
        registry.register(MeetupPlugin(_config(oauth_token=settings.meetup_token)))
    elif settings.meetup_web_enabled:
        registry.register(MeetupWebPlugin(_config(retry_delay=2.0)))
    if settings.luma_enabled:
        registry.register(
            LumaWebPlugin(_config(retry_delay=2.0), web_reader_url=settings.luma_web_reader_url or WEB_READER_URL)
        )
    if settings.site_scraper_url:
        selectors = SiteSelectors(card=settings.site_scraper_card_selector or DEFAULT_CARD_SELECTOR)
        registry.register(SiteScraperPlugin(settings.site_scraper_url, selectors, _config(retry_delay=2.0)))
    return registry


def build_ingestion_service(
    engine: Engine,
    registry: PluginRegistry,
    *,
    batch_size: Optional[int] = None,
) -> EventIngestionService:
    return EventIngestionService(
        registry,
        EventsRepository(engine),
        EventSourcesRepository(engine),
        batch_size=batch_size or load_settings().batch_size,
    )


def build_filters(
    *,
    city: Optional[str] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_km: float = 50.0,
    limit: Optional[int] = None,
) -> EventFilters:
    if (lat is None) != (lng is None):
        raise ValueError("lat and lng must be given together")
    location = GeoFilter(lat=lat, lng=lng, radius_km=radius_km) if lat is not None else None
    return EventFilters(location=location, city=city, limit=limit)


def ingest_events(
    sources: Optional[List[str]] = None,
    *,
    filters: Optional[EventFilters] = None,
    continue_on_error: bool = False,
    registry: Optional[PluginRegistry] = None,
    engine=None,
    database_url: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> IngestionResult:
    engine = resolve_engine(engine, database_url)
    registry = registry or build_registry()
    service = build_ingestion_service(engine, registry, batch_size=batch_size)
    config = IngestionConfig(
        sources=sources or None,
        filters=filters or EventFilters(),
        continue_on_error=continue_on_error,
    )
    result = asyncio.run(service.ingest(config))
    _log_summary(result, engine)
    return result


@app.command()
def run(
    source: Optional[List[str]] = typer.Option(None, "--source", help="Source slug, repeatable"),
    city: Optional[str] = typer.Option(None, help="City name"),
    lat: Optional[float] = typer.Option(None, help="Latitude"),
    lng: Optional[float] = typer.Option(None, help="Longitude"),
    radius_km: float = typer.Option(50.0, help="Search radius in km"),
    limit: Optional[int] = typer.Option(None, help="Max events per source"),
    continue_on_error: bool = typer.Option(False, help="Keep going after a failing source"),
):
    """CLI entrypoint for one ingestion run."""
    filters = build_filters(city=city, lat=lat, lng=lng, radius_km=radius_km, limit=limit)
    result = ingest_events(source, filters=filters, continue_on_error=continue_on_error)
    if not result.success:
        raise typer.Exit(code=1)


def _log_summary(result: IngestionResult, engine: Engine) -> None:
    db_url = display_url(engine.url)
    per_source = {item.source: item.events_stored for item in result.results}
    print(
        f"[ingest_events] db={db_url} success={result.success} fetched={result.total_events_fetched} "
        f"stored={result.total_events_stored} errors={result.total_errors} "
        f"duration_ms={result.duration_ms:.0f} sources={per_source}"
    )


if __name__ == "__main__":
    app()
