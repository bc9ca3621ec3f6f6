"""Compose the event sets shown by listings and searches.

Every statement built here starts from ``non_duplicates()`` so a record that
was squashed into another one never shows up in a result set.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session, selectinload

from .dates import DateRange, is_present, resolve_date_range
from .models import Event, Tag, Venue
from .utils import local_now

UI_ORDERINGS = ("date", "name", "venue")


def non_duplicates() -> Select:
    return (
        select(Event)
        .where(Event.duplicate_of_id.is_(None))
        .options(selectinload(Event.venue), selectinload(Event.tags))
    )


def ordered_by_ui_field(stmt: Select, ui_field: str | None) -> Select:
    """Order by a field name offered in the UI, falling back to start time."""
    if ui_field == "name":
        return stmt.order_by(func.lower(Event.title), Event.start_time, Event.id)
    if ui_field == "venue":
        return stmt.outerjoin(Event.venue).order_by(
            func.lower(Venue.title), Event.start_time, Event.id
        )
    return stmt.order_by(Event.start_time, Event.id)


def within_dates(stmt: Select, start_date: date, end_date: date) -> Select:
    """Keep events that overlap the days from ``start_date`` to ``end_date``."""
    range_start = datetime.combine(start_date, time.min)
    range_end = datetime.combine(end_date + timedelta(days=1), time.min)
    return stmt.where(
        func.coalesce(Event.end_time, Event.start_time) >= range_start,
        Event.start_time < range_end,
    )


def future(stmt: Select, now: datetime | None = None) -> Select:
    return stmt.where(Event.start_time >= (now or local_now()))


def upcoming_at_venue(
    session: Session, venue: Venue, now: datetime | None = None
) -> list[Event]:
    stmt = future(non_duplicates().where(Event.venue_id == venue.id), now)
    return list(session.scalars(ordered_by_ui_field(stmt, None)).all())


def _build_pagination(*, page: int, per_page: int, total_events: int):
    total_pages = (
        max(1, (total_events + per_page - 1) // per_page) if total_events else 1
    )
    page = max(1, min(page, total_pages)) if total_events else 1
    return {
        "page": page,
        "per_page": per_page,
        "total_pages": total_pages,
        "total_events": total_events,
        "has_prev": page > 1,
        "has_next": page < total_pages and total_events > 0,
        "prev_page": page - 1 if page > 1 else None,
        "next_page": page + 1 if page < total_pages and total_events > 0 else None,
    }


def paginate(session: Session, stmt: Select, *, page: int, per_page: int):
    """Run ``stmt`` for one page and return ``(events, pagination)``."""
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total_events = session.scalar(count_stmt) or 0
    pagination = _build_pagination(
        page=page, per_page=per_page, total_events=total_events
    )
    offset = (pagination["page"] - 1) * per_page if total_events else 0
    events = session.scalars(stmt.offset(offset).limit(per_page)).all()
    return events, pagination


@dataclass
class EventListing:
    """The events index: a date range when one was asked for, else upcoming."""

    order: str | None
    date_range: DateRange
    filter_by_date: bool

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "EventListing":
        order = params.get("order")
        raw_dates = params.get("date")
        return cls(
            order=order if isinstance(order, str) and order.strip() else None,
            date_range=resolve_date_range(raw_dates),
            filter_by_date=is_present(raw_dates),
        )

    @property
    def warnings(self) -> list[str]:
        return self.date_range.warnings

    @property
    def perform_caching(self) -> bool:
        return self.order is None and not self.filter_by_date

    def statement(self, now: datetime | None = None) -> Select:
        stmt = ordered_by_ui_field(non_duplicates(), self.order)
        if self.filter_by_date:
            return within_dates(stmt, self.date_range.start, self.date_range.end)
        return future(stmt, now)

    def all(self, session: Session, now: datetime | None = None) -> list[Event]:
        return list(session.scalars(self.statement(now)).all())

    def paginate(self, session: Session, *, page: int, per_page: int):
        return paginate(session, self.statement(), page=page, per_page=per_page)


@dataclass
class EventSearch:
    """A tag or keyword search over canonical events."""

    query: str | None = None
    tag: str | None = None
    order: str | None = None
    current: bool = False
    failures: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.query = (self.query or "").strip() or None
        self.tag = (self.tag or "").strip().lower() or None
        self.order = (self.order or "").strip() or None
        if self.hard_failure:
            self.failures.append("You must enter a search query")
        elif self.order and self.order not in UI_ORDERINGS:
            self.failures.append(
                f'Unknown ordering option "{self.order}", sorting by date instead.'
            )
            self.order = None

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "EventSearch":
        def _scalar(name: str) -> str | None:
            value = params.get(name)
            return value if isinstance(value, str) else None

        return cls(
            query=_scalar("query"),
            tag=_scalar("tag"),
            order=_scalar("order"),
            current=(_scalar("current") or "").lower() in {"1", "true", "yes", "on"},
        )

    @property
    def hard_failure(self) -> bool:
        return self.query is None and self.tag is None

    @property
    def failure_message(self) -> str | None:
        return " ".join(self.failures) or None

    @property
    def title(self) -> str:
        if self.tag:
            return f"Events tagged with '{self.tag}'"
        return f"Search Results for '{self.query}'"

    def statement(self, now: datetime | None = None) -> Select:
        if self.hard_failure:
            raise ValueError("Cannot build a statement for an empty search")
        stmt = non_duplicates()
        if self.tag:
            stmt = stmt.where(Event.tags.any(func.lower(Tag.name) == self.tag))
        else:
            stmt = stmt.where(
                or_(
                    Event.title.icontains(self.query, autoescape=True),
                    Event.description.icontains(self.query, autoescape=True),
                )
            )
        if self.current:
            stmt = future(stmt, now)
        return ordered_by_ui_field(stmt, self.order)

    def events(self, session: Session, now: datetime | None = None) -> list[Event]:
        if self.hard_failure:
            return []
        return list(session.scalars(self.statement(now)).all())

    def grouped(
        self, session: Session, now: datetime | None = None
    ) -> dict[str, list[Event]]:
        """Split results into events still to come and events already over."""
        now = now or local_now()
        groups: dict[str, list[Event]] = {"current": [], "past": []}
        for event in self.events(session, now):
            finish = event.end_time or event.start_time
            groups["current" if finish >= now else "past"].append(event)
        groups["past"].reverse()
        return groups
