"""Submitted event form data and its normalization."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, time
from typing import Any

from dateutil import parser as date_parser
from pydantic import BaseModel

from .models import Event
from .utils import parse_tag_list


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class EventChanges:
    """Normalized values ready to be applied to an ``Event``."""

    title: str
    description: str | None
    url: str | None
    start_time: datetime
    end_time: datetime | None
    tag_names: list[str]
    duplicate_of_id: int | None = None


class EventForm(BaseModel):
    title: str = ""
    description: str = ""
    url: str = ""
    venue_id: str = ""
    venue_name: str = ""
    tag_list: str = ""
    start_date: str = ""
    start_time: str = ""
    end_date: str = ""
    end_time: str = ""
    duplicate_of_id: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "EventForm":
        """Build a form from nested request params (``event[...]`` and friends)."""
        event_params = params.get("event")
        if not isinstance(event_params, Mapping):
            event_params = {}
        return cls(
            title=_text(event_params.get("title")),
            description=_text(event_params.get("description")),
            url=_text(event_params.get("url")),
            venue_id=_text(event_params.get("venue_id")),
            venue_name=_text(params.get("venue_name")),
            tag_list=_text(event_params.get("tag_list")),
            start_date=_text(params.get("start_date")),
            start_time=_text(params.get("start_time")),
            end_date=_text(params.get("end_date")),
            end_time=_text(params.get("end_time")),
            duplicate_of_id=_text(event_params.get("duplicate_of_id")),
        )

    @classmethod
    def from_event(cls, event: Event, *, include_times: bool = True) -> "EventForm":
        form = cls(
            title=event.title or "",
            description=event.description or "",
            url=event.url or "",
            venue_name=event.venue.title if event.venue else "",
            tag_list=event.tag_list,
            duplicate_of_id=str(event.duplicate_of_id or ""),
        )
        if include_times and event.start_time:
            form.start_date = event.start_time.strftime("%Y-%m-%d")
            form.start_time = event.start_time.strftime("%H:%M")
        if include_times and event.end_time:
            form.end_date = event.end_time.strftime("%Y-%m-%d")
            form.end_time = event.end_time.strftime("%H:%M")
        return form

    def parse(self) -> tuple[EventChanges | None, dict[str, str]]:
        """Return normalized changes, or ``None`` with field-level errors."""
        errors: dict[str, str] = {}
        if not self.title:
            errors["title"] = "Title can't be blank."

        start = None
        if not self.start_date:
            errors["start_time"] = "Start date can't be blank."
        else:
            try:
                start = combine_date_time(self.start_date, self.start_time)
            except ValueError:
                errors["start_time"] = "Start date and time must be a valid date."

        end = None
        if self.end_date or self.end_time:
            try:
                end = combine_date_time(
                    self.end_date or self.start_date, self.end_time
                )
            except ValueError:
                errors["end_time"] = "End date and time must be a valid date."
        if start and end and end <= start:
            errors["end_time"] = "End time must be after the start time."

        duplicate_of_id = None
        if self.duplicate_of_id:
            try:
                duplicate_of_id = int(self.duplicate_of_id)
            except ValueError:
                errors["duplicate_of"] = "Duplicate of must be the id of another event."

        url = self.url
        if url and not url.lower().startswith(("http://", "https://")):
            url = f"http://{url}"

        if errors or start is None:
            return None, errors
        return (
            EventChanges(
                title=self.title,
                description=self.description or None,
                url=url or None,
                start_time=start,
                end_time=end,
                tag_names=parse_tag_list(self.tag_list),
                duplicate_of_id=duplicate_of_id,
            ),
            errors,
        )


def combine_date_time(raw_date: str, raw_time: str | None) -> datetime:
    """Combine separate date and time inputs into one naive datetime."""
    if not raw_date:
        raise ValueError("A date is required")
    try:
        day = date_parser.parse(raw_date).date()
        clock = date_parser.parse(raw_time).time() if raw_time else time.min
    except OverflowError as exc:
        raise ValueError(f"Out of range: {raw_date!r} {raw_time!r}") from exc
    return datetime.combine(day, clock.replace(second=0, microsecond=0))
