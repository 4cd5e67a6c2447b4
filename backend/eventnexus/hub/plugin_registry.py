from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from eventnexus.domain.errors import DuplicateRegistrationError, PluginNotFoundError
from eventnexus.domain.models import ErrorRecord, EventFilters, HealthStatus, IngestionStats, NormalizedEvent
from eventnexus.providers.base import EventSourcePlugin

logger = logging.getLogger(__name__)

MAX_TRACKED_ERRORS = 10


class PluginRegistry:
    """In-memory registry of event source plugins keyed by source slug.

    Built explicitly at process start and handed to whoever needs it; the
    per-source stats live as long as the instance.
    """

    def __init__(self) -> None:
        self._plugins: Dict[str, EventSourcePlugin] = {}
        self._stats: Dict[str, IngestionStats] = {}
        self._fanout_errors: List[Tuple[str, Exception]] = []

    def register(self, plugin: EventSourcePlugin) -> None:
        if plugin.source in self._plugins:
            raise DuplicateRegistrationError(
                f"Plugin for source '{plugin.source}' already registered", source=plugin.source
            )
        self._plugins[plugin.source] = plugin
        logger.info("Registered plugin %s v%s for %s", plugin.name, plugin.version, plugin.source)

    def unregister(self, source: str) -> bool:
        removed = self._plugins.pop(source, None)
        return removed is not None

    def has(self, source: str) -> bool:
        return source in self._plugins

    def get_plugin(self, source: str) -> Optional[EventSourcePlugin]:
        return self._plugins.get(source)

    def get_all_plugins(self) -> List[EventSourcePlugin]:
        return list(self._plugins.values())

    def get_enabled_plugins(self) -> List[EventSourcePlugin]:
        return [plugin for plugin in self._plugins.values() if plugin.enabled]

    async def fetch_from_source(self, source: str, filters: Optional[EventFilters] = None) -> List[NormalizedEvent]:
        plugin = self._plugins.get(source)
        if plugin is None:
            raise PluginNotFoundError(f"No plugin registered for source: {source}", source=source)
        started = time.perf_counter()
        try:
            events = await plugin.fetch_events(filters)
        except Exception as exc:
            self._record_failure(source, exc, started)
            raise
        self._record_success(source, len(events), started)
        return events

    async def fetch_from_all_plugins(self, filters: Optional[EventFilters] = None) -> Dict[str, List[NormalizedEvent]]:
        """Fetch from every enabled plugin; failures are recorded and skipped."""
        errors: List[Tuple[str, Exception]] = []
        results: Dict[str, List[NormalizedEvent]] = {}
        for plugin in self.get_enabled_plugins():
            try:
                results[plugin.source] = await self.fetch_from_source(plugin.source, filters)
            except Exception as exc:
                logger.warning("Fetch from %s failed: %s", plugin.source, exc)
                errors.append((plugin.source, exc))
        self._fanout_errors = errors
        return results

    def last_fanout_errors(self) -> List[Tuple[str, Exception]]:
        """(source, exception) pairs skipped by the latest fetch_from_all_plugins call."""
        return list(self._fanout_errors)

    async def get_health_status(self) -> Dict[str, HealthStatus]:
        statuses: Dict[str, HealthStatus] = {}
        for source, plugin in self._plugins.items():
            try:
                statuses[source] = await plugin.health_check()
            except Exception as exc:
                statuses[source] = HealthStatus(
                    is_healthy=False,
                    last_check_at=datetime.now(timezone.utc),
                    last_error=f"HEALTH_CHECK_FAILED: {exc}",
                )
        return statuses

    def get_ingestion_stats(self) -> Dict[str, IngestionStats]:
        return dict(self._stats)

    def get_stats_for_source(self, source: str) -> Optional[IngestionStats]:
        return self._stats.get(source)

    def clear_stats(self) -> None:
        self._stats.clear()

    def sync_with_catalog(self, active_slugs: Iterable[str]) -> List[str]:
        """Warn about enabled plugins whose source is missing from the active catalog."""
        known = set(active_slugs)
        missing: List[str] = []
        for plugin in self.get_enabled_plugins():
            if plugin.source not in known:
                logger.warning("Plugin %s (%s) is enabled but not found in database", plugin.name, plugin.source)
                missing.append(plugin.source)
        return missing

    def _stats_for(self, source: str) -> IngestionStats:
        stats = self._stats.get(source)
        if stats is None:
            stats = IngestionStats(source=source)
            self._stats[source] = stats
        return stats

    def _record_success(self, source: str, fetched: int, started: float) -> None:
        stats = self._stats_for(source)
        stats.success_count += 1
        stats.events_fetched += fetched
        stats.last_run_at = datetime.now(timezone.utc)
        stats.duration_ms = (time.perf_counter() - started) * 1000

    def _record_failure(self, source: str, exc: Exception, started: float) -> None:
        stats = self._stats_for(source)
        stats.error_count += 1
        stats.last_run_at = datetime.now(timezone.utc)
        stats.duration_ms = (time.perf_counter() - started) * 1000
        stats.errors.append(ErrorRecord(code=getattr(exc, "code", "FETCH_ERROR"), message=str(exc)))
        del stats.errors[:-MAX_TRACKED_ERRORS]
