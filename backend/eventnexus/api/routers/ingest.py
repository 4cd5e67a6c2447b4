from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from eventnexus.api.deps import get_ingestion_service
from eventnexus.domain.models import EventFilters, GeoFilter
from eventnexus.services.ingestion import EventIngestionService, IngestionConfig

router = APIRouter(tags=["ingest"])


@router.post("/ingest")
async def trigger_ingestion(
    sources: Optional[str] = Query(None, description="Comma separated source slugs"),
    location_lat: Optional[float] = Query(None, ge=-90, le=90),
    location_lng: Optional[float] = Query(None, ge=-180, le=180),
    radius_km: Optional[float] = Query(None, gt=0),
    city: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    service: EventIngestionService = Depends(get_ingestion_service),
):
    filters = EventFilters(city=city, limit=limit)
    if location_lat is not None and location_lng is not None:
        filters.location = GeoFilter(lat=location_lat, lng=location_lng)
        if radius_km:
            filters.location.radius_km = radius_km
    slugs = [slug.strip() for slug in sources.split(",") if slug.strip()] if sources else None
    # one failing source never blocks the others here
    result = await service.ingest(IngestionConfig(sources=slugs, filters=filters, continue_on_error=True))
    return {
        "success": True,
        "data": {
            "sources": [
                {
                    "source": item.source,
                    "success": item.success,
                    "events_fetched": item.events_fetched,
                    "events_stored": item.events_stored,
                    "errors": item.errors,
                    "duration_ms": item.duration_ms,
                }
                for item in result.results
            ],
            "total_events_fetched": result.total_events_fetched,
            "total_events_stored": result.total_events_stored,
            "total_errors": result.total_errors,
            "duration_ms": result.duration_ms,
        },
    }


@router.get("/ingest")
async def ingestion_status(service: EventIngestionService = Depends(get_ingestion_service)):
    """Health of every registered plugin plus the per-source run counters."""
    health = await service.get_health_status()
    stats = service.get_stats()
    return {
        "success": True,
        "data": {
            "health": [
                {
                    "source": source,
                    "is_healthy": status.is_healthy,
                    "last_check_at": _to_iso(status.last_check_at),
                    "last_error": status.last_error,
                    "response_time_ms": status.response_time_ms,
                }
                for source, status in health.items()
            ],
            "stats": [
                {
                    "source": source,
                    "success_count": item.success_count,
                    "error_count": item.error_count,
                    "events_fetched": item.events_fetched,
                    "last_run_at": _to_iso(item.last_run_at),
                    "duration_ms": item.duration_ms,
                    "errors": [error.message for error in item.errors],
                }
                for source, item in stats.items()
            ],
        },
    }


def _to_iso(dt):
    return dt.isoformat() if dt else None
