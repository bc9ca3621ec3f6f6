from __future__ import annotations

import json
import types
import xml.etree.ElementTree as ET
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from openevents import utils
from openevents.models import Event, Venue
from openevents.renderers import (
    EVENT_KINDS,
    InvalidCallbackError,
    OutputKind,
    UnsupportedFormatError,
    render_atom,
    render_json,
    render_kml,
    render_xml,
    serialize_event,
)


def _url_for(event: Event) -> str:
    return f"http://example.test/events/{event.id}"


def _event(event_id: int = 1, venue: Venue | None = None) -> Event:
    return Event(
        id=event_id,
        title=f"Event {event_id}",
        start_time=datetime(2030, 1, 1, 18, 0),
        venue=venue,
    )


def test_negotiate_prefers_the_extension():
    assert OutputKind.negotiate("ICS", "text/html") is OutputKind.ICS
    assert OutputKind.negotiate(None, None) is OutputKind.HTML


def test_negotiate_reads_the_accept_header():
    assert OutputKind.negotiate(None, "application/json") is OutputKind.JSON
    assert OutputKind.negotiate(None, "text/calendar;q=0.9") is OutputKind.ICS
    assert OutputKind.negotiate(None, "*/*") is OutputKind.HTML


def test_negotiate_rejects_unsupported_kinds():
    with pytest.raises(UnsupportedFormatError):
        OutputKind.negotiate("pdf")
    with pytest.raises(UnsupportedFormatError):
        OutputKind.negotiate("atom", allowed=EVENT_KINDS)
    with pytest.raises(UnsupportedFormatError):
        OutputKind.negotiate(None, "image/png")


def test_json_without_callback_is_plain():
    rendered = render_json({"ok": True})
    assert rendered.media_type == "application/json"
    assert json.loads(rendered.content) == {"ok": True}


def test_json_with_callback_is_wrapped():
    rendered = render_json([1, 2], callback="handlers.onEvents")
    assert rendered.media_type == "text/javascript"
    assert rendered.content == "/**/handlers.onEvents([1, 2]);"


def test_json_rejects_unsafe_callbacks():
    with pytest.raises(InvalidCallbackError):
        render_json([], callback="alert(1)//")


def test_serialize_event_nests_the_venue_and_link():
    payload = serialize_event(_event(3, Venue(id=9, title="Hall")), url_for=_url_for)
    assert payload["venue"]["title"] == "Hall"
    assert payload["links"] == {"self": "http://example.test/events/3"}
    assert payload["start_time"] == "2030-01-01T18:00:00"


def test_xml_list_and_single_event():
    root = ET.fromstring(render_xml([_event(1), _event(2)]).content)
    assert root.tag == "events"
    assert root.get("type") == "array"
    assert [node.findtext("title") for node in root] == ["Event 1", "Event 2"]

    single = ET.fromstring(render_xml(_event(5)).content)
    assert single.tag == "event"
    assert single.find("id").get("type") == "integer"
    assert single.find("venue").get("nil") == "true"


def test_kml_only_includes_events_with_coordinates():
    placed = Venue(id=1, title="Park", latitude=45.5, longitude=-122.6)
    unplaced = Venue(id=2, title="Somewhere")
    rendered = render_kml(
        [_event(1, placed), _event(2, unplaced), _event(3)], url_for=_url_for
    )
    assert rendered.content.count("<Placemark>") == 1
    assert "-122.6,45.5" in rendered.content


def test_atom_timestamps_are_not_shifted_by_the_site_zone(monkeypatch):
    monkeypatch.setattr(
        utils, "settings", types.SimpleNamespace(tzinfo=ZoneInfo("America/New_York"))
    )
    event = _event(1)
    event.created_at = datetime(2029, 12, 31, 9, 30)
    event.updated_at = datetime(2030, 1, 1, 12, 0)
    rendered = render_atom(
        [event],
        url_for=_url_for,
        feed_url="http://example.test/events.atom",
        title="Events",
    )
    assert "<published>2029-12-31T09:30:00Z</published>" in rendered.content
    assert rendered.content.count("<updated>2030-01-01T12:00:00Z</updated>") == 2
    assert "17:00:00Z" not in rendered.content
