"""SQLAlchemy models for OpenEvents."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _now() -> datetime:
    return utcnow()


event_tags = Table(
    "event_tags",
    Base.metadata,
    Column("event_id", Integer, ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Venue(Base):
    __tablename__ = "venues"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False, index=True)
    address = Column(String(255), nullable=True)
    url = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    duplicate_of_id = Column(Integer, ForeignKey("venues.id"), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    duplicate_of = relationship("Venue", remote_side=[id])
    events = relationship("Event", back_populates="venue")

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of_id is not None or self.duplicate_of is not None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False, unique=True)

    events = relationship("Event", secondary=event_tags, back_populates="tags")


class Event(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    url = Column(String(255), nullable=True)
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    venue_id = Column(Integer, ForeignKey("venues.id"), nullable=True)
    duplicate_of_id = Column(Integer, ForeignKey("events.id"), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)

    venue = relationship("Venue", back_populates="events")
    duplicate_of = relationship("Event", remote_side=[id])
    tags = relationship(
        "Tag",
        secondary=event_tags,
        back_populates="events",
        order_by="Tag.name",
    )

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of_id is not None or self.duplicate_of is not None

    @property
    def tag_list(self) -> str:
        return ", ".join(sorted(tag.name for tag in self.tags))
