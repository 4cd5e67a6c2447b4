from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import quote, urljoin

from bs4 import BeautifulSoup

from eventnexus.domain.models import EventFilters

from .scraper import ParsedEvent, WebScraperPlugin, attr_of, keyword_tags, text_of

MEETUP_BASE_URL = "https://www.meetup.com"
EVENT_LINK = re.compile(r"/events/(\d+)")
HEADINGS = ["h1", "h2", "h3", "h4", "h5", "h6"]

MEETUP_KEYWORD_TAGS = (
    ("networking", "business", "startup"),
    ("tech", "technology", "ai", "software", "coding"),
    ("workshop", "seminar", "education"),
    ("dubai", "uae"),
)


class MeetupWebPlugin(WebScraperPlugin):
    """Public Meetup search pages, used when no GraphQL token is available."""

    name = "Meetup (Web)"
    source = "meetup"
    start_url = f"{MEETUP_BASE_URL}/find/events/?location=Dubai&radius=50"

    def build_url(self, filters: EventFilters) -> str:
        if filters.location is not None:
            loc = filters.location
            return f"{MEETUP_BASE_URL}/find/events/?location={loc.lat},{loc.lng}&radius={loc.radius_km or 50:g}"
        if filters.city:
            return f"{MEETUP_BASE_URL}/find/events/?location={quote(filters.city)}"
        return self.config.base_url or self.start_url

    def parse_events(self, soup: BeautifulSoup, filters: EventFilters) -> List[ParsedEvent]:
        events: List[ParsedEvent] = []
        seen: set[str] = set()
        for link in soup.find_all("a", href=EVENT_LINK):
            href = attr_of(link, "href")
            if not href or href in seen:
                continue
            seen.add(href)
            card = link.find_parent(["article", "li"]) or link.parent
            title = self._title(link, card)
            if not title or len(title) > 200:
                continue
            category = self._category(card)
            location = text_of(card.select_one("[class*='venue'], address")) if card is not None else ""
            description = ""
            if card is not None:
                for para in card.find_all("p"):
                    text = text_of(para)
                    if 20 < len(text) < 500:
                        description = text
                        break
            time_node = card.select_one("time, [datetime]") if card is not None else None
            events.append(
                ParsedEvent(
                    title=title,
                    url=urljoin(MEETUP_BASE_URL, href),
                    image_url=(attr_of(card.find("img"), "src") or None) if card is not None else None,
                    start_time=attr_of(time_node, "datetime") or text_of(time_node) or None,
                    location=location or None,
                    description=description or None,
                    category=category,
                    tags=self._tags(title, category),
                )
            )
        return events

    def generate_tags(self, event: ParsedEvent) -> List[str]:
        return list(event.tags)

    @staticmethod
    def _title(link, card) -> str:
        heading = link.find(HEADINGS)
        title = text_of(heading)
        if not title and card is not None:
            for candidate in card.find_all(HEADINGS):
                text = text_of(candidate)
                if 5 < len(text) < 200:
                    title = text
                    break
        return title or text_of(link)

    @staticmethod
    def _category(card) -> Optional[str]:
        if card is None:
            return None
        badge = text_of(card.select_one("[class*='badge'], [class*='tag']"))
        if badge and len(badge) < 30:
            return badge
        href = attr_of(card.find("a"), "href")
        if "/tech-" in href or "-tech-" in href:
            return "Tech"
        if "/business-" in href:
            return "Business"
        if "/social-" in href:
            return "Social"
        return None

    @staticmethod
    def _tags(title: str, category: Optional[str]) -> List[str]:
        tags = [category.lower()] if category else []
        return tags + keyword_tags(title, MEETUP_KEYWORD_TAGS)
