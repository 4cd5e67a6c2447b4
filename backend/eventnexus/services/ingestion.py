from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from eventnexus.config import DEFAULT_BATCH_SIZE
from eventnexus.domain.models import EventFilters, HealthStatus, IngestionStats
from eventnexus.hub.plugin_registry import PluginRegistry
from eventnexus.infra.db.events_repository import EventsRepository, event_row_from_normalized
from eventnexus.infra.db.sources_repository import EventSourcesRepository

logger = logging.getLogger(__name__)


@dataclass
class IngestionConfig:
    sources: Optional[List[str]] = None
    filters: EventFilters = field(default_factory=EventFilters)
    batch_size: Optional[int] = None
    continue_on_error: bool = False


@dataclass
class SourceIngestionResult:
    source: str
    success: bool
    events_fetched: int = 0
    events_stored: int = 0
    errors: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


@dataclass
class IngestionResult:
    success: bool
    results: List[SourceIngestionResult]
    total_events_fetched: int = 0
    total_events_stored: int = 0
    total_errors: int = 0
    duration_ms: float = 0.0


class EventIngestionService:
    """Runs registry plugins against storage and reports one result per source.

    A failing source never raises out of ``ingest_from_source``; the error text
    lands in the result instead.
    """

    def __init__(
        self,
        registry: PluginRegistry,
        events_repo: EventsRepository,
        sources_repo: EventSourcesRepository,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if registry is None:
            raise ValueError("registry is required")
        if events_repo is None or sources_repo is None:
            raise ValueError("events_repo and sources_repo are required")
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.registry = registry
        self.events_repo = events_repo
        self.sources_repo = sources_repo
        self.batch_size = batch_size

    async def ingest_from_source(
        self,
        source: str,
        source_id: int,
        config: Optional[IngestionConfig] = None,
    ) -> SourceIngestionResult:
        config = config or IngestionConfig()
        started = time.perf_counter()

        def _failed(message: str, fetched: int = 0, stored: int = 0) -> SourceIngestionResult:
            return SourceIngestionResult(
                source=source,
                success=False,
                events_fetched=fetched,
                events_stored=stored,
                errors=[message],
                duration_ms=(time.perf_counter() - started) * 1000,
            )

        plugin = self.registry.get_plugin(source)
        if plugin is None:
            return _failed(f"No plugin registered for source: {source}")
        if not plugin.validate_config():
            logger.warning("Skipping %s: plugin configuration is invalid", source)
            return _failed(f"Plugin configuration is invalid for: {source}")

        try:
            events = await self.registry.fetch_from_source(source, config.filters)
        except Exception as exc:
            logger.error("Ingestion fetch failed for %s: %s", source, exc)
            return _failed(str(exc))

        # last occurrence of an external id wins within one run
        unique: Dict[str, dict] = {}
        for event in events:
            unique.pop(event.external_id, None)
            unique[event.external_id] = event_row_from_normalized(event, source_id)
        rows = list(unique.values())

        batch_size = config.batch_size or self.batch_size
        stored = 0
        try:
            for offset in range(0, len(rows), batch_size):
                batch = rows[offset : offset + batch_size]
                stored += len(self.events_repo.upsert_events(batch))
        except Exception as exc:
            logger.error("Storing events for %s failed after %d rows: %s", source, stored, exc)
            return _failed(str(exc), fetched=len(events), stored=stored)

        logger.info("Ingested %s: fetched=%d stored=%d", source, len(events), stored)
        return SourceIngestionResult(
            source=source,
            success=True,
            events_fetched=len(events),
            events_stored=stored,
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    async def ingest(self, config: Optional[IngestionConfig] = None) -> IngestionResult:
        config = config or IngestionConfig()
        started = time.perf_counter()
        catalog = {source.slug: source.id for source in self.sources_repo.list_active_sources()}

        targets: List[str] = []
        if config.sources:
            for slug in config.sources:
                if slug not in catalog:
                    logger.warning("Source %s is not an active source in the database, skipping", slug)
                    continue
                targets.append(slug)
        else:
            self.registry.sync_with_catalog(catalog)
            enabled = {plugin.source for plugin in self.registry.get_enabled_plugins()}
            targets = [slug for slug in catalog if slug in enabled]

        results: List[SourceIngestionResult] = []
        for slug in targets:
            result = await self.ingest_from_source(slug, catalog[slug], config)
            results.append(result)
            if not result.success and not config.continue_on_error:
                logger.warning("Stopping ingestion after failure in %s", slug)
                break

        return IngestionResult(
            success=all(result.success for result in results),
            results=results,
            total_events_fetched=sum(result.events_fetched for result in results),
            total_events_stored=sum(result.events_stored for result in results),
            total_errors=sum(len(result.errors) for result in results),
            duration_ms=(time.perf_counter() - started) * 1000,
        )

    def get_stats(self) -> Dict[str, IngestionStats]:
        return self.registry.get_ingestion_stats()

    def clear_stats(self) -> None:
        self.registry.clear_stats()

    async def get_health_status(self) -> Dict[str, HealthStatus]:
        return await self.registry.get_health_status()
