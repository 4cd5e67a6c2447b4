from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from eventnexus.domain.models import EventFilters, Location, NormalizedEvent

from .base import EventSourcePlugin, as_float, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000
MAX_PAGE_SIZE = 50


class EventbritePlugin(EventSourcePlugin):
    """Eventbrite REST API (https://www.eventbrite.com/platform/api/)."""

    BASE_URL = "https://www.eventbriteapi.com/v3"

    name = "Eventbrite"
    source = "eventbrite"
    requires_credentials = True
    default_rate_limit = (1000, 3600.0)
    rate_limit_headers = ("X-EB-RateLimit-Limit", "X-EB-RateLimit-Remaining", "X-EB-RateLimit-Reset")

    @property
    def base_url(self) -> str:
        return (self.config.base_url or self.BASE_URL).rstrip("/")

    def _default_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.credential:
            headers["Authorization"] = f"Bearer {self.credential}"
        return headers

    async def _probe(self) -> None:
        async with self._client() as client:
            resp = await self._send(client, "GET", f"{self.base_url}/users/me/owned_events/", params={"limit": 1})
            self._check_response(resp, self._error_detail(resp))

    async def _fetch(self, filters: EventFilters) -> List[NormalizedEvent]:
        max_events = filters.limit or DEFAULT_LIMIT
        page_size = min(filters.limit or MAX_PAGE_SIZE, MAX_PAGE_SIZE)
        events: List[NormalizedEvent] = []
        page = 1
        has_more = True
        async with self._client() as client:
            while has_more and len(events) < max_events:
                resp = await self._send(
                    client,
                    "GET",
                    f"{self.base_url}/events/search/",
                    params=self._build_params(filters, page=page, page_size=page_size),
                )
                self._check_response(resp, self._error_detail(resp))
                data = resp.json()
                events.extend(self._process_events(data.get("events") or []))
                has_more = bool((data.get("pagination") or {}).get("has_more_items"))
                page += 1
        return events[:max_events]

    @staticmethod
    def _build_params(filters: EventFilters, *, page: int, page_size: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "page": page,
            "page_size": page_size,
            "status": "live",
            "order_by": "start_asc",
        }
        if filters.location:
            params["location.address"] = f"{filters.location.lat},{filters.location.lng}"
            params["location.within"] = f"{filters.location.radius_km:g}km"
        if filters.categories:
            params["categories"] = ",".join(filters.categories)
        if filters.query:
            params["q"] = filters.query
        if filters.start_date:
            params["start_date.range_start"] = format_timestamp(filters.start_date)
        if filters.end_date:
            params["start_date.range_end"] = format_timestamp(filters.end_date)
        if filters.virtual_only:
            params["online_event"] = "online_event_only"
        return params

    @staticmethod
    def _error_detail(resp: httpx.Response) -> Optional[str]:
        if resp.is_success:
            return None
        try:
            payload = resp.json()
        except ValueError:
            return resp.text or None
        if not isinstance(payload, dict):
            return None
        return payload.get("error_description") or payload.get("error")

    def _process_events(self, items: list[dict]) -> List[NormalizedEvent]:
        mapped: List[NormalizedEvent] = []
        for item in items:
            try:
                mapped.append(self._map_event(item))
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping Eventbrite event %s: %s", item.get("id"), exc)
        return mapped

    def _map_event(self, payload: dict) -> NormalizedEvent:
        venue = payload.get("venue")
        address = (venue or {}).get("address") or {}
        is_virtual = bool(payload.get("online_event")) or not venue
        category = payload.get("category") or payload.get("subcategory")
        tags: list[str] = list(payload.get("tags") or [])
        if category:
            tags.append(category)
        subcategory = payload.get("subcategory")
        if subcategory and subcategory != category:
            tags.append(subcategory)
        location_name = (venue or {}).get("name")
        if not location_name:
            location_name = "Online Event" if is_virtual else address.get("address_1")
        start = parse_timestamp((payload.get("start") or {}).get("utc"))
        if start is None:
            raise ValueError(f"Eventbrite event {payload.get('id')} has no start time")
        return NormalizedEvent(
            source=self.source,
            external_id=str(payload.get("id", "")),
            title=(payload.get("name") or {}).get("text") or "",
            description=(payload.get("description") or {}).get("text"),
            url=payload.get("url"),
            image_url=(payload.get("logo") or {}).get("url"),
            start_time=start,
            end_time=parse_timestamp((payload.get("end") or {}).get("utc")),
            location=Location(
                name=location_name,
                lat=as_float(address.get("latitude")),
                lng=as_float(address.get("longitude")),
                is_virtual=is_virtual,
            ),
            category=category,
            tags=tuple(tags),
            raw_data=payload,
        )

