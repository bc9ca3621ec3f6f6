"""CRUD helpers for events, venues, and tags."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .duplicates import progenitor_of
from .forms import EventChanges
from .models import Event, Tag, Venue
from .utils import utcnow

VenueRef = int | str | None


def _lookup_id(raw: Any) -> int | None:
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def get_event(session: Session, event_id: Any) -> Event | None:
    """Return the event for an id taken from a URL, or ``None``."""
    lookup = _lookup_id(event_id)
    if lookup is None:
        return None
    return session.get(Event, lookup)


def get_venue(session: Session, venue_id: Any) -> Venue | None:
    lookup = _lookup_id(venue_id)
    if lookup is None:
        return None
    return session.get(Venue, lookup)


def venue_ref(params: Mapping[str, Any]) -> VenueRef:
    """Return the venue reference found in submitted params.

    Venues may be referred to either by id (``event[venue_id]``) or by name
    (``venue_name``). The id wins when both are present and is returned as an
    ``int``; ``ValueError`` is raised when it is not a number. ``None`` means
    the submission does not touch the venue association.
    """
    event_params = params.get("event")
    if isinstance(event_params, Mapping):
        raw_id = event_params.get("venue_id")
        if raw_id is not None and str(raw_id).strip():
            return int(str(raw_id).strip())
    name = params.get("venue_name")
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def find_or_initialize_venue(session: Session, title: str) -> Venue:
    """Return a canonical venue titled ``title`` or a new unsaved one."""
    stmt = (
        select(Venue)
        .where(func.lower(Venue.title) == title.strip().lower())
        .where(Venue.duplicate_of_id.is_(None))
        .order_by(Venue.id)
    )
    venue = session.scalars(stmt).first()
    if venue:
        return venue
    return Venue(title=title.strip())


def resolve_venue(session: Session, ref: VenueRef) -> Venue | None:
    """Turn a venue reference into a venue; ``LookupError`` for unknown ids."""
    if ref is None:
        return None
    if isinstance(ref, int):
        venue = session.get(Venue, ref)
        if venue is None:
            raise LookupError(f"Couldn't find venue with id {ref}")
    else:
        venue = find_or_initialize_venue(session, ref)
    if venue.id is None:
        return venue
    return progenitor_of(venue)


def resolve_duplicate_target(
    session: Session, event: Event | None, duplicate_of_id: int | None
) -> Event | None:
    """Return the canonical event that ``event`` should be marked a duplicate of."""
    if duplicate_of_id is None:
        return None
    target = session.get(Event, duplicate_of_id)
    if target is None:
        raise LookupError(f"Couldn't find event with id {duplicate_of_id}")
    progenitor = progenitor_of(target)
    if event is not None and progenitor is event:
        raise ValueError("An event can't be a duplicate of itself")
    return progenitor


def associate_with_venue(event: Event, venue: Venue | None) -> Venue | None:
    """Point ``event`` at ``venue``; ``None`` leaves the association alone."""
    if venue is not None and event.venue is not venue:
        event.venue = venue
    return event.venue


def ensure_tags(session: Session, names: Sequence[str]) -> list[Tag]:
    """Return tags for ``names``, creating the ones that don't exist yet."""
    if not names:
        return []
    existing = {
        tag.name: tag
        for tag in session.scalars(select(Tag).where(Tag.name.in_(names))).all()
    }
    tags: list[Tag] = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            session.add(tag)
            existing[name] = tag
        tags.append(tag)
    return tags


def apply_event_changes(
    session: Session,
    event: Event,
    changes: EventChanges,
    *,
    venue: Venue | None = None,
    duplicate_of: Event | None = None,
) -> Event:
    """Copy normalized form values onto ``event`` and persist it."""
    event.title = changes.title
    event.description = changes.description
    event.url = changes.url
    event.start_time = changes.start_time
    event.end_time = changes.end_time
    event.tags = ensure_tags(session, changes.tag_names)
    associate_with_venue(event, venue)
    event.duplicate_of = duplicate_of
    event.updated_at = utcnow()
    session.add(event)
    session.flush()
    return event


def delete_event(session: Session, event: Event) -> None:
    """Delete ``event``, handing its duplicates on to what it duplicated."""
    dependents = session.scalars(
        select(Event).where(Event.duplicate_of_id == event.id)
    ).all()
    for dependent in dependents:
        dependent.duplicate_of = event.duplicate_of
    session.delete(event)
    session.flush()


def update_venue(
    session: Session,
    venue: Venue,
    *,
    title: str,
    address: str | None,
    url: str | None,
    description: str | None,
    latitude: float | None,
    longitude: float | None,
) -> Venue:
    venue.title = title
    venue.address = address
    venue.url = url
    venue.description = description
    venue.latitude = latitude
    venue.longitude = longitude
    venue.updated_at = utcnow()
    session.add(venue)
    session.flush()
    return venue
