"""iCalendar (.ics) export."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from .utils import to_utc

if TYPE_CHECKING:
    from openevents.models import Event


_MAX_LINE_OCTETS = 75


def _format_utc(dt: datetime) -> str:
    """Format a site-local datetime as an RFC 5545 UTC timestamp."""

    return to_utc(dt).replace(microsecond=0).strftime("%Y%m%dT%H%M%SZ")


def _escape_text(value: str | None) -> str:
    """Escape text for ICS fields."""

    if not value:
        return ""
    normalized = value.replace("\r\n", "\n").replace("\r", "\n")
    return (
        normalized.replace("\\", "\\\\")
        .replace(";", r"\;")
        .replace(",", r"\,")
        .replace("\n", "\\n")
    )


def _fold(line: str) -> list[str]:
    """Split a content line into 75-octet chunks joined by leading spaces."""

    encoded = line.encode("utf-8")
    if len(encoded) <= _MAX_LINE_OCTETS:
        return [line]
    chunks: list[str] = []
    current = ""
    limit = _MAX_LINE_OCTETS
    for char in line:
        if len((current + char).encode("utf-8")) > limit:
            chunks.append(current)
            current = ""
            limit = _MAX_LINE_OCTETS - 1
        current += char
    chunks.append(current)
    return [chunks[0]] + [f" {chunk}" for chunk in chunks[1:]]


def _location(event: Event) -> str:
    venue = event.venue
    if venue is None:
        return ""
    parts = [venue.title, venue.address]
    return ", ".join(part for part in parts if part)


def _vevent_lines(
    event: Event, *, url_for: Callable[[Event], str], dtstamp: str
) -> list[str]:
    lines = [
        "BEGIN:VEVENT",
        f"UID:event-{event.id}@openevents",
        f"DTSTAMP:{dtstamp}",
        f"DTSTART:{_format_utc(event.start_time)}",
        f"DTEND:{_format_utc(event.end_time or event.start_time)}",
        f"SUMMARY:{_escape_text(event.title)}",
    ]
    if event.description:
        lines.append(f"DESCRIPTION:{_escape_text(event.description)}")
    location = _location(event)
    if location:
        lines.append(f"LOCATION:{_escape_text(location)}")
    if event.venue is not None and event.venue.has_coordinates:
        lines.append(f"GEO:{event.venue.latitude};{event.venue.longitude}")
    if event.tags:
        lines.append(
            "CATEGORIES:" + ",".join(_escape_text(tag.name) for tag in event.tags)
        )
    lines.append(f"URL:{url_for(event)}")
    lines.append("END:VEVENT")
    return lines


def generate_ics(
    events: Iterable[Event],
    *,
    url_for: Callable[[Event], str],
    now: datetime | None = None,
) -> str:
    """Return one VCALENDAR with a VEVENT for each of ``events``."""

    dtstamp = (now or datetime.now(UTC)).astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "PRODID:-//OpenEvents//EN",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
    ]
    for event in events:
        lines.extend(_vevent_lines(event, url_for=url_for, dtstamp=dtstamp))
    lines.append("END:VCALENDAR")
    folded = [chunk for line in lines for chunk in _fold(line)]
    return "\r\n".join(folded) + "\r\n"
