from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from eventnexus.domain.models import EventFilters

from .base import PluginConfig
from .scraper import ParsedEvent, WebScraperPlugin, attr_of, text_of

DEFAULT_CARD_SELECTOR = "article"


@dataclass
class SiteSelectors:
    """CSS selectors describing one event listing page.

    ``card`` selects one node per event; every other selector is resolved
    inside that card. ``link`` defaults to the first anchor of the card.
    """

    card: str
    title: str = "h1, h2, h3, h4"
    link: str = "a[href]"
    start_time: Optional[str] = "time, [class*='date']"
    location: Optional[str] = "[class*='location'], [class*='venue']"
    image: Optional[str] = "img"
    description: Optional[str] = "p"
    category: Optional[str] = None


class SiteScraperPlugin(WebScraperPlugin):
    """Listing-page scraper configured with a URL and a set of CSS selectors."""

    name = "Site Scraper"

    def __init__(
        self,
        url: str,
        selectors: SiteSelectors,
        config: Optional[PluginConfig] = None,
        *,
        source: str = "site",
        name: Optional[str] = None,
        **kwargs,
    ) -> None:
        if not url:
            raise ValueError("url is required")
        self.source = source
        if name:
            self.name = name
        self.start_url = url
        self.selectors = selectors
        super().__init__(config, **kwargs)

    def build_url(self, filters: EventFilters) -> str:
        return self.start_url

    def parse_events(self, soup: BeautifulSoup, filters: EventFilters) -> List[ParsedEvent]:
        sel = self.selectors
        events: List[ParsedEvent] = []
        for card in soup.select(sel.card):
            title = text_of(card.select_one(sel.title))
            link = card if card.name == "a" else card.select_one(sel.link)
            href = attr_of(link, "href")
            if not title or not href:
                continue
            time_node = card.select_one(sel.start_time) if sel.start_time else None
            image = card.select_one(sel.image) if sel.image else None
            events.append(
                ParsedEvent(
                    title=title,
                    url=urljoin(self.start_url, href),
                    image_url=attr_of(image, "src") or None,
                    start_time=attr_of(time_node, "datetime") or text_of(time_node) or None,
                    location=self._text(card, sel.location),
                    description=self._text(card, sel.description),
                    category=self._text(card, sel.category),
                )
            )
        return events

    @staticmethod
    def _text(card, selector: Optional[str]) -> Optional[str]:
        if not selector:
            return None
        return text_of(card.select_one(selector)) or None
