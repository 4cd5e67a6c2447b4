import json

import httpx
import pytest

from eventnexus.domain.errors import AuthError, RateLimitedError
from eventnexus.domain.models import EventFilters, GeoFilter
from eventnexus.providers.base import PluginConfig
from eventnexus.providers.meetup import MeetupPlugin


async def _no_sleep(seconds):
    return None


def _node(event_id: str, **overrides) -> dict:
    node = {
        "id": event_id,
        "title": f"Python Dubai #{event_id}",
        "description": "Monthly Python meetup",
        "eventUrl": f"https://www.meetup.com/python-dubai/events/{event_id}/",
        "imageUrl": None,
        "startDate": "2026-03-05T19:00:00+04:00",
        "endDate": "2026-03-05T21:00:00+04:00",
        "venue": {
            "name": "AstroLabs",
            "address": "Cluster R",
            "city": "Dubai",
            "state": "DU",
            "lat": 25.07,
            "lng": 55.14,
        },
        "isOnline": False,
        "group": {
            "name": "Python Dubai",
            "category": {"name": "Technology", "categorySets": [{"name": "Programming"}]},
        },
        "eventType": "PHYSICAL",
    }
    node.update(overrides)
    return node


def _page(nodes, *, cursor=None, has_next=False) -> dict:
    return {
        "data": {
            "findEvents": {
                "edges": [{"node": node, "cursor": node["id"]} for node in nodes],
                "pageInfo": {"endCursor": cursor, "hasNextPage": has_next},
            }
        }
    }


def _plugin(handler, **config) -> MeetupPlugin:
    return MeetupPlugin(
        PluginConfig(oauth_token="oauth", **config),
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
    )


def test_map_event_builds_tags_and_location():
    event = MeetupPlugin(PluginConfig(oauth_token="t"))._map_event(_node("1"))
    assert event.category == "Technology"
    assert event.tags == ("PHYSICAL", "Programming", "Python Dubai", "Dubai", "DU")
    assert event.location.name == "AstroLabs, Cluster R, Dubai"
    assert event.start_time.utcoffset().total_seconds() == 0
    assert event.start_time.hour == 15


def test_map_event_online():
    event = MeetupPlugin(PluginConfig(oauth_token="t"))._map_event(_node("2", venue=None, isOnline=True))
    assert event.location.is_virtual is True
    assert event.location.name == "Online Event"


def test_variables_from_filters():
    filters = EventFilters(location=GeoFilter(lat=25.2, lng=55.3, radius_km=15), query="python", virtual_only=True)
    variables = MeetupPlugin._variables(filters, first=20, after="abc")
    assert variables["first"] == 20
    assert variables["after"] == "abc"
    assert variables["lat"] == 25.2
    assert variables["radius"] == 15
    assert variables["query"] == "python"
    assert variables["isOnline"] is True


async def test_fetch_walks_cursor_pages():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        if body["variables"]["after"] is None:
            return httpx.Response(200, json=_page([_node("1"), _node("2")], cursor="c1", has_next=True))
        return httpx.Response(200, json=_page([_node("3")], cursor="c2", has_next=False))

    events = await _plugin(handler).fetch_events()
    assert [event.external_id for event in events] == ["1", "2", "3"]
    assert [body["variables"]["after"] for body in bodies] == [None, "c1"]
    assert bodies[0]["variables"]["first"] == 50


async def test_graphql_errors_are_classified():
    def handler(request):
        return httpx.Response(200, json={"errors": [{"message": "Rate limit exceeded for this token"}]})

    plugin = _plugin(handler, max_retries=1, retry_delay=0.0)
    with pytest.raises(RateLimitedError):
        await plugin.fetch_events()


async def test_forbidden_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(403, text="forbidden")

    with pytest.raises(AuthError):
        await _plugin(handler).fetch_events()
    assert len(calls) == 1
