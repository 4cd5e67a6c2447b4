from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
from sqlalchemy import create_engine

from eventnexus.domain.errors import classify_message
from eventnexus.domain.models import EventFilters, Location, NormalizedEvent
from eventnexus.infra.db.tables import metadata
from eventnexus.providers.base import EventSourcePlugin, PluginConfig

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)  # a Monday


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self, clock: Optional["FakeClock"] = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeClock:
    def __init__(self, start: datetime = NOW):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class StaticPlugin(EventSourcePlugin):
    """In-memory plugin returning canned events or raising a canned error."""

    name = "Static"

    def __init__(
        self,
        source: str,
        events: Optional[List[NormalizedEvent]] = None,
        *,
        error: Optional[str] = None,
        enabled: bool = True,
        **kwargs,
    ):
        self.source = source
        self.name = f"Static {source}"
        self._events = list(events or [])
        self._error = error
        self.fetch_calls = 0
        kwargs.setdefault("sleep", RecordingSleep())
        super().__init__(PluginConfig(enabled=enabled, max_retries=0), **kwargs)

    async def _probe(self) -> None:
        if self._error:
            raise classify_message(self._error)(self._error, source=self.source)

    async def _fetch(self, filters: EventFilters) -> List[NormalizedEvent]:
        self.fetch_calls += 1
        if self._error:
            raise classify_message(self._error)(self._error, source=self.source)
        return list(self._events)


def make_event(
    source: str,
    external_id: str,
    *,
    title: Optional[str] = None,
    start: Optional[datetime] = None,
    category: Optional[str] = None,
    tags=(),
    lat: Optional[float] = None,
    lng: Optional[float] = None,
) -> NormalizedEvent:
    return NormalizedEvent(
        source=source,
        external_id=external_id,
        title=title or f"Event {external_id}",
        start_time=start or NOW + timedelta(days=3),
        location=Location(name="Venue", lat=lat, lng=lng),
        category=category,
        tags=tuple(tags),
    )


@pytest.fixture()
def engine(tmp_path):
    db_path = tmp_path / "eventnexus_tests.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    metadata.create_all(engine)
    yield engine
    metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def fake_clock():
    return FakeClock()


@pytest.fixture()
def static_plugin():
    return StaticPlugin


@pytest.fixture()
def event_factory():
    return make_event
