"""Shared pytest fixtures for OpenEvents."""

from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from openevents import api, database, storage
from openevents.models import Base, Event, Tag, Venue


@pytest.fixture(scope="session", autouse=True)
def configure_in_memory_db():
    """Reuse a single in-memory SQLite database for fast, isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    session_factory = scoped_session(
        sessionmaker(
            bind=engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
        )
    )
    database.engine = engine
    database.SessionLocal = session_factory
    storage.engine = engine
    api.SessionLocal = session_factory
    Base.metadata.create_all(bind=engine)
    yield
    session_factory.remove()


@pytest.fixture(autouse=True)
def clean_database():
    """Reset all tables between tests to guarantee isolation."""

    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)
    Base.metadata.create_all(bind=database.engine)
    yield
    database.SessionLocal.remove()


@pytest.fixture()
def session():
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_event(session):
    """Create and commit an event; keyword arguments override the defaults."""

    def _make_event(
        title: str = "Python Meetup",
        *,
        start_time: datetime,
        end_time: datetime | None = None,
        description: str | None = None,
        venue: Venue | None = None,
        tags: tuple[str, ...] = (),
        duplicate_of: Event | None = None,
    ) -> Event:
        event = Event(
            title=title,
            description=description,
            start_time=start_time,
            end_time=end_time,
            venue=venue,
            duplicate_of=duplicate_of,
        )
        for name in tags:
            tag = session.query(Tag).filter_by(name=name).one_or_none()
            event.tags.append(tag or Tag(name=name))
        session.add(event)
        session.commit()
        return event

    return _make_event


@pytest.fixture()
def make_venue(session):
    def _make_venue(title: str = "Community Hall", **fields) -> Venue:
        venue = Venue(title=title, **fields)
        session.add(venue)
        session.commit()
        return venue

    return _make_venue
