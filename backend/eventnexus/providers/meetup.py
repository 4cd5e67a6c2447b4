from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from eventnexus.domain.errors import classify_message
from eventnexus.domain.models import EventFilters, Location, NormalizedEvent

from .base import EventSourcePlugin, as_float, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000
MAX_PAGE_SIZE = 100

FIND_EVENTS_QUERY = """
query FindEvents(
  $first: Int!
  $after: String
  $query: String
  $lat: Float
  $lng: Float
  $radius: Float
  $startDate: DateTime
  $endDate: DateTime
  $isOnline: Boolean
) {
  findEvents(
    input: {
      first: $first
      after: $after
      query: $query
      lat: $lat
      lng: $lng
      radius: $radius
      startDate: $startDate
      endDate: $endDate
      isOnline: $isOnline
    }
  ) {
    edges {
      node {
        id
        title
        description
        eventUrl
        imageUrl
        startDate
        endDate
        venue { id name address city state country lat lng }
        isOnline
        group { id name urlname category { id name categorySets { name } } }
        eventType
      }
      cursor
    }
    pageInfo { endCursor hasNextPage }
  }
}
"""


class MeetupPlugin(EventSourcePlugin):
    """Meetup GraphQL API, OAuth token required, 500 requests per minute."""

    GRAPHQL_URL = "https://www.meetup.com/gql"

    name = "Meetup"
    source = "meetup"
    requires_credentials = True
    default_rate_limit = (500, 60.0)
    rate_limit_headers = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset")

    @property
    def graphql_url(self) -> str:
        return self.config.base_url or self.GRAPHQL_URL

    def _default_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.credential:
            headers["Authorization"] = f"Bearer {self.credential}"
        return headers

    async def _probe(self) -> None:
        async with self._client() as client:
            await self._query(client, self._variables(EventFilters(), first=1, after=None))

    async def _fetch(self, filters: EventFilters) -> List[NormalizedEvent]:
        max_events = filters.limit or DEFAULT_LIMIT
        page_size = min(filters.limit or 50, MAX_PAGE_SIZE)
        events: List[NormalizedEvent] = []
        cursor: Optional[str] = None
        async with self._client() as client:
            while len(events) < max_events:
                data = await self._query(client, self._variables(filters, first=page_size, after=cursor))
                found = data.get("findEvents")
                if not found:
                    break
                for edge in found.get("edges") or []:
                    node = edge.get("node") or {}
                    try:
                        events.append(self._map_event(node))
                    except (TypeError, ValueError) as exc:
                        logger.warning("Skipping Meetup event %s: %s", node.get("id"), exc)
                page_info = found.get("pageInfo") or {}
                cursor = page_info.get("endCursor")
                if not page_info.get("hasNextPage") or not cursor:
                    break
        return events[:max_events]

    async def _query(self, client, variables: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._send(
            client,
            "POST",
            self.graphql_url,
            json={"query": FIND_EVENTS_QUERY, "variables": variables},
        )
        self._check_response(resp, f"Meetup API error: {resp.text}" if not resp.is_success else None)
        payload = resp.json()
        errors = payload.get("errors")
        if errors:
            message = (errors[0] or {}).get("message") or "Meetup API error"
            raise classify_message(message)(message, source=self.source)
        return payload.get("data") or {}

    @staticmethod
    def _variables(filters: EventFilters, *, first: int, after: Optional[str]) -> Dict[str, Any]:
        location = filters.location
        return {
            "first": first,
            "after": after,
            "query": filters.query or None,
            "lat": location.lat if location else None,
            "lng": location.lng if location else None,
            "radius": location.radius_km if location else None,
            "startDate": format_timestamp(filters.start_date) if filters.start_date else None,
            "endDate": format_timestamp(filters.end_date) if filters.end_date else None,
            "isOnline": True if filters.virtual_only else None,
        }

    def _map_event(self, node: dict) -> NormalizedEvent:
        venue = node.get("venue")
        is_virtual = bool(node.get("isOnline")) or not venue
        group = node.get("group") or {}
        category_info = group.get("category") or {}
        category = category_info.get("name")
        tags: list[str] = []
        if node.get("eventType"):
            tags.append(node["eventType"])
        for category_set in category_info.get("categorySets") or []:
            if category_set.get("name"):
                tags.append(category_set["name"])
        if group.get("name"):
            tags.append(group["name"])
        if venue:
            for key in ("city", "state"):
                if venue.get(key):
                    tags.append(venue[key])
        start = parse_timestamp(node.get("startDate"))
        if start is None:
            raise ValueError("missing startDate")
        return NormalizedEvent(
            source=self.source,
            external_id=str(node.get("id", "")),
            title=node.get("title") or "",
            description=node.get("description"),
            url=node.get("eventUrl"),
            image_url=node.get("imageUrl"),
            start_time=start,
            end_time=parse_timestamp(node.get("endDate")),
            location=Location(
                name=self._location_name(venue, is_virtual),
                lat=as_float((venue or {}).get("lat")),
                lng=as_float((venue or {}).get("lng")),
                is_virtual=is_virtual,
            ),
            category=category,
            tags=tuple(tags),
            raw_data=node,
        )

    @staticmethod
    def _location_name(venue: Optional[dict], is_virtual: bool) -> Optional[str]:
        if is_virtual:
            return "Online Event"
        parts = [venue.get(key) for key in ("name", "address", "city")] if venue else []
        return ", ".join(part for part in parts if part) or None
