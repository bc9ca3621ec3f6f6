"""Turn a resolved event or event list into one of the supported outputs."""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from fastapi import Request, Response
from fastapi.templating import Jinja2Templates

from .config import settings
from .ics import generate_ics
from .models import Event, Venue
from .utils import format_time_range, render_markdown

UrlFor = Callable[[Event], str]

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals["site_title"] = settings.site_title
templates.env.filters["markdown"] = render_markdown
templates.env.filters["time_range"] = format_time_range

_callback_pattern = re.compile(r"^[A-Za-z_$][\w$]*(?:\.[A-Za-z_$][\w$]*)*$")


class UnsupportedFormatError(Exception):
    """Raised when a client asks for an output kind the route can't produce."""

    def __init__(self, requested: str):
        super().__init__(f"Unsupported format: {requested}")
        self.requested = requested


class InvalidCallbackError(ValueError):
    """Raised when a JSONP callback name is not a plain JavaScript identifier."""


class OutputKind(str, Enum):
    HTML = "html"
    JSON = "json"
    XML = "xml"
    ICS = "ics"
    ATOM = "atom"
    KML = "kml"

    @property
    def media_type(self) -> str:
        return MEDIA_TYPES[self]

    @classmethod
    def negotiate(
        cls,
        extension: str | None,
        accept: str | None = None,
        *,
        allowed: Sequence["OutputKind"] | None = None,
    ) -> "OutputKind":
        """Pick an output kind from a path extension or an Accept header."""
        allowed = tuple(allowed or cls)
        if extension:
            try:
                kind = cls(extension.lower())
            except ValueError:
                raise UnsupportedFormatError(extension) from None
            if kind not in allowed:
                raise UnsupportedFormatError(extension)
            return kind
        if not accept:
            return cls.HTML
        for media_range in accept.split(","):
            media_type = media_range.split(";", 1)[0].strip().lower()
            if media_type in {"*/*", "text/*"}:
                return cls.HTML
            for kind in allowed:
                if media_type in ACCEPTED_TYPES[kind]:
                    return kind
        raise UnsupportedFormatError(accept)


MEDIA_TYPES = {
    OutputKind.HTML: "text/html",
    OutputKind.JSON: "application/json",
    OutputKind.XML: "application/xml",
    OutputKind.ICS: "text/calendar",
    OutputKind.ATOM: "application/atom+xml",
    OutputKind.KML: "application/vnd.google-earth.kml+xml",
}

ACCEPTED_TYPES = {
    OutputKind.HTML: {"text/html", "application/xhtml+xml"},
    OutputKind.JSON: {"application/json", "text/javascript", "application/javascript"},
    OutputKind.XML: {"application/xml", "text/xml"},
    OutputKind.ICS: {"text/calendar"},
    OutputKind.ATOM: {"application/atom+xml"},
    OutputKind.KML: {"application/vnd.google-earth.kml+xml"},
}

EVENT_KINDS = (OutputKind.HTML, OutputKind.XML, OutputKind.JSON, OutputKind.ICS)
LISTING_KINDS = tuple(OutputKind)


@dataclass
class Rendered:
    content: str
    media_type: str
    headers: dict[str, str] = field(default_factory=dict)

    def to_response(self, status_code: int = 200) -> Response:
        return Response(
            content=self.content,
            media_type=self.media_type,
            headers=self.headers,
            status_code=status_code,
        )


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_venue(venue: Venue) -> dict[str, Any]:
    return {
        "id": venue.id,
        "title": venue.title,
        "address": venue.address,
        "url": venue.url,
        "description": venue.description,
        "latitude": venue.latitude,
        "longitude": venue.longitude,
        "duplicate_of_id": venue.duplicate_of_id,
        "created_at": _isoformat(venue.created_at),
        "updated_at": _isoformat(venue.updated_at),
    }


def serialize_event(event: Event, *, url_for: UrlFor | None = None) -> dict[str, Any]:
    payload = {
        "id": event.id,
        "title": event.title,
        "description": event.description,
        "url": event.url,
        "start_time": _isoformat(event.start_time),
        "end_time": _isoformat(event.end_time),
        "venue_id": event.venue_id,
        "duplicate_of_id": event.duplicate_of_id,
        "tag_list": event.tag_list,
        "created_at": _isoformat(event.created_at),
        "updated_at": _isoformat(event.updated_at),
        "venue": serialize_venue(event.venue) if event.venue else None,
    }
    if url_for is not None:
        payload["links"] = {"self": url_for(event)}
    return payload


def render_json(payload: Any, *, callback: str | None = None) -> Rendered:
    """Serialize ``payload``; wrap it in ``callback(...)`` only when asked to."""
    body = json.dumps(payload)
    if callback is None or not callback.strip():
        return Rendered(body, MEDIA_TYPES[OutputKind.JSON])
    callback = callback.strip()
    if not _callback_pattern.match(callback):
        raise InvalidCallbackError(f"Invalid callback name: {callback!r}")
    return Rendered(f"/**/{callback}({body});", "text/javascript")


def _xml_value(parent: ET.Element, name: str, value: Any) -> None:
    child = ET.SubElement(parent, name)
    if value is None:
        child.set("nil", "true")
    elif isinstance(value, bool):
        child.set("type", "boolean")
        child.text = "true" if value else "false"
    elif isinstance(value, int):
        child.set("type", "integer")
        child.text = str(value)
    elif isinstance(value, float):
        child.set("type", "float")
        child.text = repr(value)
    else:
        child.text = str(value)


def _xml_record(parent: ET.Element | None, name: str, payload: dict[str, Any]) -> ET.Element:
    element = ET.SubElement(parent, name) if parent is not None else ET.Element(name)
    for key, value in payload.items():
        if isinstance(value, dict):
            _xml_record(element, key, value)
        else:
            _xml_value(element, key, value)
    return element


def render_xml(events: Event | Iterable[Event]) -> Rendered:
    """Serialize one event or a list of events, each with its venue."""
    if isinstance(events, Event):
        root = _xml_record(None, "event", serialize_event(events))
    else:
        root = ET.Element("events", {"type": "array"})
        for event in events:
            _xml_record(root, "event", serialize_event(event))
    body = ET.tostring(root, encoding="unicode", xml_declaration=True)
    return Rendered(body, MEDIA_TYPES[OutputKind.XML])


def render_ics(
    events: Iterable[Event], *, url_for: UrlFor, filename: str = "events.ics"
) -> Rendered:
    return Rendered(
        generate_ics(events, url_for=url_for),
        MEDIA_TYPES[OutputKind.ICS],
        {"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _stored_utc(value: datetime) -> datetime:
    """Mark a stored naive UTC timestamp as UTC."""
    return value.replace(tzinfo=UTC)


def render_atom(
    events: Sequence[Event], *, url_for: UrlFor, feed_url: str, title: str
) -> Rendered:
    updated = max((event.updated_at for event in events), default=None)
    body = templates.get_template("events/index.atom").render(
        events=events,
        url_for=url_for,
        feed_url=feed_url,
        title=title,
        updated=_stored_utc(updated) if updated else None,
        stored_utc=_stored_utc,
    )
    return Rendered(body, MEDIA_TYPES[OutputKind.ATOM])


def render_kml(events: Sequence[Event], *, url_for: UrlFor) -> Rendered:
    placed = [event for event in events if event.venue and event.venue.has_coordinates]
    body = templates.get_template("events/index.kml").render(
        events=placed, url_for=url_for
    )
    return Rendered(body, MEDIA_TYPES[OutputKind.KML])


def render_page(
    request: Request,
    template_name: str,
    context: dict[str, Any],
    *,
    status_code: int = 200,
) -> Response:
    return templates.TemplateResponse(
        request,
        template_name,
        {"request": request, **context},
        status_code=status_code,
    )


def render_events(
    kind: OutputKind,
    events: Sequence[Event],
    *,
    request: Request,
    url_for: UrlFor,
    template_name: str,
    context: dict[str, Any],
    callback: str | None = None,
) -> Response:
    """Render a list of canonical events in the requested ``kind``."""
    if kind is OutputKind.HTML:
        return render_page(request, template_name, context)
    if kind is OutputKind.JSON:
        rendered = render_json(
            [serialize_event(event, url_for=url_for) for event in events],
            callback=callback,
        )
    elif kind is OutputKind.XML:
        rendered = render_xml(events)
    elif kind is OutputKind.ICS:
        rendered = render_ics(events, url_for=url_for)
    elif kind is OutputKind.ATOM:
        rendered = render_atom(
            events,
            url_for=url_for,
            feed_url=str(request.url),
            title=context.get("page_title") or settings.site_title,
        )
    elif kind is OutputKind.KML:
        rendered = render_kml(events, url_for=url_for)
    else:
        raise UnsupportedFormatError(kind.value)
    return rendered.to_response()


def render_event(
    kind: OutputKind,
    event: Event,
    *,
    request: Request,
    url_for: UrlFor,
    template_name: str,
    context: dict[str, Any],
    callback: str | None = None,
) -> Response:
    """Render a single canonical event in the requested ``kind``."""
    if kind is OutputKind.HTML:
        return render_page(request, template_name, context)
    if kind is OutputKind.JSON:
        rendered = render_json(serialize_event(event, url_for=url_for), callback=callback)
    elif kind is OutputKind.XML:
        rendered = render_xml(event)
    elif kind is OutputKind.ICS:
        rendered = render_ics([event], url_for=url_for, filename=f"event_{event.id}.ics")
    else:
        raise UnsupportedFormatError(kind.value)
    return rendered.to_response()
