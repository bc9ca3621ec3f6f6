"""Development helpers for populating fake venues and events."""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from faker import Faker
from sqlalchemy.orm import Session

from .crud import apply_event_changes, find_or_initialize_venue
from .database import get_session
from .duplicates import squash_duplicates
from .forms import EventChanges
from .models import Event, Venue
from .storage import init_db
from .utils import local_now

_venue_suffixes = [
    "Community Center",
    "Library",
    "Brewing",
    "Hall",
    "Coworking",
    "Park Pavilion",
]
_event_types = [
    "Meetup",
    "Workshop",
    "Hack Night",
    "Lightning Talks",
    "Book Club",
    "Study Group",
    "Social",
]
_tag_pool = [
    "python",
    "ruby",
    "javascript",
    "design",
    "hardware",
    "data",
    "beginners",
    "social",
]


def seed_fake_data(
    *,
    venue_count: int = 8,
    event_count: int = 40,
    duplicate_percentage: int = 10,
) -> dict[str, int]:
    """Populate the SQLite database with synthetic venues and events.

    Roughly ``duplicate_percentage`` percent of the events are copies of an
    earlier event and get squashed into it, so duplicate handling has data to
    work with.
    """
    if venue_count < 0:
        raise ValueError("venue_count must be >= 0")
    if event_count < 0:
        raise ValueError("event_count must be >= 0")
    if not 0 <= duplicate_percentage <= 100:
        raise ValueError("duplicate_percentage must be between 0 and 100")

    init_db()
    fake = Faker()
    stats = {"venues": 0, "events": 0, "duplicates": 0}

    with get_session() as session:
        venues = [_create_venue(session, fake) for _ in range(venue_count)]
        stats["venues"] = len(venues)
        created: list[Event] = []
        for _ in range(event_count):
            original = (
                random.choice(created)
                if created and random.randint(1, 100) <= duplicate_percentage
                else None
            )
            if original is not None:
                copy = _copy_event(session, original)
                squash_duplicates(session, original, [copy])
                stats["duplicates"] += 1
            else:
                venue = random.choice(venues) if venues else None
                created.append(_create_event(session, fake, venue=venue))
            stats["events"] += 1

    return stats


def _create_venue(session: Session, fake: Faker) -> Venue:
    venue = find_or_initialize_venue(
        session, f"{fake.last_name()} {random.choice(_venue_suffixes)}"
    )
    if venue.id is None:
        venue.address = fake.address().replace("\n", ", ")
        venue.url = fake.url()
        if random.random() < 0.7:
            venue.latitude = float(fake.latitude())
            venue.longitude = float(fake.longitude())
        session.add(venue)
        session.flush()
    return venue


def _create_event(session: Session, fake: Faker, *, venue: Venue | None) -> Event:
    start_time = _random_start_time()
    changes = EventChanges(
        title=f"{fake.city()} {random.choice(_event_types)}",
        description="\n\n".join(fake.paragraphs(nb=2)),
        url=fake.url() if random.random() < 0.5 else None,
        start_time=start_time,
        end_time=_maybe_end_time(start_time),
        tag_names=random.sample(_tag_pool, k=random.randint(0, 3)),
    )
    return apply_event_changes(session, Event(), changes, venue=venue)


def _copy_event(session: Session, original: Event) -> Event:
    changes = EventChanges(
        title=original.title,
        description=original.description,
        url=original.url,
        start_time=original.start_time,
        end_time=original.end_time,
        tag_names=[tag.name for tag in original.tags],
    )
    return apply_event_changes(session, Event(), changes, venue=original.venue)


def _random_start_time() -> datetime:
    day_offset = random.randint(-14, 60)
    hour = random.randint(9, 20)
    base = local_now().replace(hour=hour, minute=0, second=0, microsecond=0)
    return base + timedelta(days=day_offset, minutes=random.choice([0, 15, 30]))


def _maybe_end_time(start_time: datetime) -> datetime | None:
    if random.random() < 0.3:
        return None
    return start_time + timedelta(hours=random.randint(1, 4))
