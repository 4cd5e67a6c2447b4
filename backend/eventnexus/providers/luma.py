from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from eventnexus.domain.models import EventFilters

from .base import PluginConfig
from .scraper import ParsedEvent, WebScraperPlugin

logger = logging.getLogger(__name__)

LUMA_BASE_URL = "https://lu.ma"
WEB_READER_URL = "https://webreader-production.up.railway.app/webReader"

CITY_SLUGS = {
    "dubai": "dubai",
    "abu dhabi": "abu-dhabi",
    "london": "london",
    "new york": "nyc",
    "san francisco": "san-francisco",
    "los angeles": "los-angeles",
    "singapore": "singapore",
    "tokyo": "tokyo",
    "paris": "paris",
    "berlin": "berlin",
    "mumbai": "mumbai",
    "delhi": "delhi",
    "bangalore": "bangalore",
    "sydney": "sydney",
    "toronto": "toronto",
    "amsterdam": "amsterdam",
    "barcelona": "barcelona",
}

CATEGORY_KEYWORDS = (
    ("Tech", ("tech", "ai", "coding", "programming", "software", "developer", "workshop", "hackathon")),
    ("Business", ("business", "networking", "startup", "entrepreneur", "pitch", "investment")),
    ("Finance", ("crypto", "blockchain", "trading", "investment", "finance", "defi")),
    ("Social", ("party", "social", "gathering", "meetup", "community")),
    ("Sports", ("sports", "fitness", "yoga", "run", "marathon", "watch party")),
    ("Arts", ("art", "exhibition", "gallery", "music", "concert", "show")),
    ("Education", ("education", "course", "class", "learning", "seminar", "lecture")),
)

IMAGE_LINE = re.compile(r"^!\[.*?\]\((https://[^)]+)\)")
TITLE_LINE = re.compile(r"^###\s+(.+)$")


def city_slug(city: str) -> str:
    lowered = city.strip().lower()
    return CITY_SLUGS.get(lowered) or re.sub(r"\s+", "-", lowered)


def event_url_for(title: str) -> str:
    slug = re.sub(r"[^a-z0-9\s-]", "", title.lower())
    slug = re.sub(r"\s+", "-", slug)[:50]
    return f"{LUMA_BASE_URL}/e/{slug}"


def category_for(title: str) -> Optional[str]:
    lowered = title.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return None


def parse_markdown(markdown: str, *, city_tag: str) -> List[ParsedEvent]:
    """Read the "## Events" section of a rendered Luma city page.

    An image line opens a new event, ``### Title`` names it, ``By <host>``
    becomes the description and the first short plain line is the location.
    """
    events: List[ParsedEvent] = []
    current: Optional[ParsedEvent] = None
    in_events = False
    for raw_line in markdown.splitlines():
        line = raw_line.strip()
        if line == "## Events":
            in_events = True
            continue
        if not in_events:
            continue
        if line.startswith("## "):
            break
        image = IMAGE_LINE.match(line)
        if image:
            if current is not None and current.title:
                events.append(current)
            current = ParsedEvent(title="", url="", image_url=image.group(1), tags=["luma", city_tag])
            continue
        if current is None:
            continue
        title = TITLE_LINE.match(line)
        if title:
            current.title = title.group(1).strip()
            current.url = event_url_for(current.title)
            current.category = category_for(current.title)
            continue
        if line.startswith("By "):
            if not current.description:
                current.description = f"Hosted by {line[3:].strip()}"
            current.tags.append("hosted")
            continue
        if (
            5 < len(line) < 100
            and not line.startswith(("#", "!", "By"))
            and "http" not in line
            and not current.location
        ):
            current.location = line
    if current is not None and current.title:
        events.append(current)
    return events


class LumaWebPlugin(WebScraperPlugin):
    """Luma city discovery pages, rendered to markdown by a web reader service."""

    name = "Luma (Web)"
    source = "luma"
    start_url = f"{LUMA_BASE_URL}/dubai"

    def __init__(self, config: Optional[PluginConfig] = None, *, web_reader_url: str = WEB_READER_URL, **kwargs) -> None:
        super().__init__(config, **kwargs)
        self.web_reader_url = web_reader_url

    def _default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    def build_url(self, filters: EventFilters) -> str:
        url = f"{LUMA_BASE_URL}/{city_slug(filters.city)}" if filters.city else (self.config.base_url or self.start_url)
        if filters.query:
            url += f"?q={quote(filters.query)}"
        return url

    def request_url(self, page_url: str) -> str:
        return f"{self.web_reader_url}?{urlencode({'url': page_url, 'return_format': 'markdown'})}"

    def parse_response(self, response: httpx.Response, filters: EventFilters) -> List[ParsedEvent]:
        content = self._content(response.json())
        if not content:
            logger.warning("No content received from web reader for %s", response.request.url)
            return []
        city_tag = city_slug(filters.city) if filters.city else "dubai"
        return parse_markdown(content, city_tag=city_tag)

    @staticmethod
    def _content(payload) -> str:
        if isinstance(payload, list) and payload:
            first = payload[0] or {}
            return ((first.get("text") or {}).get("content")) or ""
        if isinstance(payload, dict):
            return payload.get("content") or ""
        return ""
