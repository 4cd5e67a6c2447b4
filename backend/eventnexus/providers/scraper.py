from __future__ import annotations

import hashlib
import logging
import re
from abc import abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from eventnexus.domain.models import EventFilters, Location, NormalizedEvent

from .base import EventSourcePlugin, PluginConfig

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; EventNexusBot/1.0; +https://eventnexus.com/bot)"

MONTHS = {
    "january": 1, "jan": 1,
    "february": 2, "feb": 2,
    "march": 3, "mar": 3,
    "april": 4, "apr": 4,
    "may": 5,
    "june": 6, "jun": 6,
    "july": 7, "jul": 7,
    "august": 8, "aug": 8,
    "september": 9, "sep": 9, "sept": 9,
    "october": 10, "oct": 10,
    "november": 11, "nov": 11,
    "december": 12, "dec": 12,
}

# "Mon, Feb 3 • 3:00 PM" (no year, current year assumed)
WEEKDAY_FORMAT = re.compile(r"(\w+),\s+(\w+)\s+(\d+)\s+•\s+(\d+):(\d+)\s+(AM|PM)", re.IGNORECASE)
# "Feb 5, 2025 • 7:00 PM"
DATED_FORMAT = re.compile(r"(\w+)\s+(\d+),\s+(\d{4})\s+•\s+(\d+):(\d+)\s+(AM|PM)", re.IGNORECASE)
# "December 11, 2025, 6:00 PM - 8:00 PM"
RANGE_FORMAT = re.compile(
    r"(\w+)\s+(\d+),\s+(\d{4}),\s+(\d+):(\d+)\s+(AM|PM)\s*-\s*(\d+):(\d+)\s+(AM|PM)",
    re.IGNORECASE,
)

VIRTUAL_KEYWORDS = ("online", "virtual", "zoom", "teams", "webinar")

# First matching group contributes its first keyword as a tag.
KEYWORD_TAGS: Tuple[Tuple[str, ...], ...] = (
    ("networking", "b2b", "business"),
    ("tech", "technology", "ai", "startup"),
    ("music", "concert", "dj"),
    ("workshop", "seminar", "course"),
    ("yoga", "fitness", "wellness"),
    ("dubai", "uae"),
)

EXTERNAL_ID_PATTERNS = (
    re.compile(r"/e/([^/?#]+)"),
    re.compile(r"/events/(\d+)"),
    re.compile(r"/tickets-(\d+)"),
)


@dataclass
class ParsedEvent:
    """Intermediate shape every scraper produces before normalization."""

    title: str
    url: str
    image_url: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)


def to_24h(hour: int, ampm: str) -> int:
    ampm = ampm.upper()
    if ampm == "PM" and hour != 12:
        return hour + 12
    if ampm == "AM" and hour == 12:
        return 0
    return hour


def month_number(name: str) -> int:
    return MONTHS.get(name.lower(), 1)


def parse_datetime_range(text: str, *, now: datetime) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Parse listing date strings into UTC datetimes. ``(None, None)`` when unrecognised."""
    if not text:
        return None, None
    try:
        match = RANGE_FORMAT.search(text)
        if match:
            month, day, year, hour, minute, ampm, end_hour, end_minute, end_ampm = match.groups()
            start = datetime(
                int(year), month_number(month), int(day), to_24h(int(hour), ampm), int(minute), tzinfo=timezone.utc
            )
            end = start.replace(hour=to_24h(int(end_hour), end_ampm), minute=int(end_minute))
            return start, end if end > start else None
        match = WEEKDAY_FORMAT.search(text)
        if match:
            _, month, day, hour, minute, ampm = match.groups()
            start = datetime(
                now.year, month_number(month), int(day), to_24h(int(hour), ampm), int(minute), tzinfo=timezone.utc
            )
            return start, None
        match = DATED_FORMAT.search(text)
        if match:
            month, day, year, hour, minute, ampm = match.groups()
            start = datetime(
                int(year), month_number(month), int(day), to_24h(int(hour), ampm), int(minute), tzinfo=timezone.utc
            )
            return start, None
    except ValueError:
        return None, None
    try:
        parsed = datetime.fromisoformat(text.strip().replace("Z", "+00:00"))
    except ValueError:
        return None, None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, None


def external_id_from_url(url: str) -> str:
    for pattern in EXTERNAL_ID_PATTERNS:
        match = pattern.search(url)
        if match:
            return match.group(1)
    # digest of the whole url; a prefix would collide across one site
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:16]


def is_virtual_location(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in VIRTUAL_KEYWORDS)


def keyword_tags(title: str, groups: Tuple[Tuple[str, ...], ...] = KEYWORD_TAGS) -> List[str]:
    lowered = title.lower()
    for group in groups:
        if any(keyword in lowered for keyword in group):
            return [group[0]]
    return []


class WebScraperPlugin(EventSourcePlugin):
    """Base for unauthenticated sources read from public HTML pages."""

    requires_credentials = False
    default_rate_limit = (60, 3600.0)
    start_url: str = ""

    @classmethod
    def default_config(cls) -> PluginConfig:
        return PluginConfig(retry_delay=2.0)

    def _default_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def _probe(self) -> None:
        async with self._client() as client:
            resp = await self._send(client, "GET", self.config.base_url or self.start_url)
            self._check_response(resp)

    async def _fetch(self, filters: EventFilters) -> List[NormalizedEvent]:
        url = self.build_url(filters)
        async with self._client() as client:
            resp = await self._send(client, "GET", self.request_url(url))
            self._check_response(resp)
        parsed = self.parse_response(resp, filters)
        events = self.normalize_events(parsed, filters)
        if filters.limit:
            events = events[: filters.limit]
        logger.info("%s parsed %d events from %s", self.name, len(events), url)
        return events

    @abstractmethod
    def build_url(self, filters: EventFilters) -> str:
        ...

    def request_url(self, page_url: str) -> str:
        return page_url

    def parse_response(self, response: httpx.Response, filters: EventFilters) -> List[ParsedEvent]:
        return self.parse_events(BeautifulSoup(response.text, "html.parser"), filters)

    def parse_events(self, soup: BeautifulSoup, filters: EventFilters) -> List[ParsedEvent]:
        """HTML scrapers override this; scrapers of non-HTML pages override parse_response instead."""
        return []

    def normalize_events(self, parsed: List[ParsedEvent], filters: Optional[EventFilters] = None) -> List[NormalizedEvent]:
        events: List[NormalizedEvent] = []
        seen: set[str] = set()
        for item in parsed:
            event = self.normalize_event(item, filters)
            if event.external_id in seen:
                continue
            seen.add(event.external_id)
            events.append(event)
        return events

    def normalize_event(self, event: ParsedEvent, filters: Optional[EventFilters] = None) -> NormalizedEvent:
        now = self._clock()
        start, range_end = parse_datetime_range(event.start_time or "", now=now)
        end, _ = parse_datetime_range(event.end_time or "", now=now)
        return NormalizedEvent(
            source=self.source,
            external_id=self.external_id(event.url),
            title=event.title.strip(),
            description=(event.description or "").strip() or None,
            url=event.url,
            image_url=event.image_url or None,
            start_time=start or now,
            end_time=end or range_end,
            location=self.parse_location(event.location, filters),
            category=event.category or None,
            tags=tuple(self.generate_tags(event)),
            raw_data={
                "title": event.title,
                "url": event.url,
                "start_time": event.start_time,
                "location": event.location,
            },
        )

    def external_id(self, url: str) -> str:
        return external_id_from_url(url)

    def parse_location(self, text: Optional[str], filters: Optional[EventFilters] = None) -> Location:
        name = (text or "").strip() or None
        location = Location(name=name, is_virtual=is_virtual_location(name))
        # scraped cards carry no coordinates; fall back to the searched point
        if filters is not None and filters.location is not None and not location.has_coordinates:
            return Location(
                name=location.name,
                lat=filters.location.lat,
                lng=filters.location.lng,
                is_virtual=location.is_virtual,
            )
        return location

    def generate_tags(self, event: ParsedEvent) -> List[str]:
        tags: List[str] = []
        if event.category:
            tags.append(event.category)
        tags.extend(event.tags)
        tags.extend(keyword_tags(event.title))
        return tags


def text_of(node) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


def attr_of(node, name: str) -> str:
    if node is None:
        return ""
    value = node.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return (value or "").strip()
