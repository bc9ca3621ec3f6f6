"""Resolve duplicate-of chains to their canonical record.

Events and venues can both be marked as a duplicate of another record of the
same kind. The record reached by following ``duplicate_of`` until a record
that is not a duplicate is the *progenitor*. Listings only ever show
progenitors, and a request for a duplicate is redirected to its progenitor.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TypeVar

from sqlalchemy.orm import Session

from .models import Event, Venue

logger = logging.getLogger("uvicorn.error")

Record = TypeVar("Record", Event, Venue)


class DuplicateCycleError(RuntimeError):
    """Raised when a duplicate-of chain loops or points at a missing record."""


def progenitor_of(record: Record) -> Record:
    """Return the canonical record reached by following ``duplicate_of``."""
    visited: set[int] = set()
    current = record
    while current.is_duplicate:
        visited.add(id(current))
        target = current.duplicate_of
        if target is None:
            logger.error(
                "%s %s is marked duplicate of missing record %s",
                type(current).__name__,
                current.id,
                current.duplicate_of_id,
            )
            raise DuplicateCycleError(
                f"{type(current).__name__} {current.id} points at missing "
                f"record {current.duplicate_of_id}"
            )
        if id(target) in visited:
            logger.error(
                "Duplicate chain starting at %s %s loops back to %s",
                type(record).__name__,
                record.id,
                target.id,
            )
            raise DuplicateCycleError(
                f"Duplicate chain starting at {type(record).__name__} "
                f"{record.id} contains a cycle"
            )
        current = target
    return current


def squash_duplicates(
    session: Session, master: Record, duplicates: Iterable[Record]
) -> list[Record]:
    """Mark ``duplicates`` as duplicates of ``master``'s progenitor.

    Records that already pointed at one of the squashed records are re-pointed
    at the progenitor so every chain stays a single hop.
    """
    progenitor = progenitor_of(master)
    model = type(progenitor)
    squashed: list[Record] = []
    for duplicate in duplicates:
        if progenitor_of(duplicate) is progenitor:
            if duplicate is progenitor:
                raise ValueError("Cannot squash a record into itself")
            continue
        duplicate.duplicate_of = progenitor
        session.add(duplicate)
        squashed.append(duplicate)
    session.flush()
    if squashed:
        ids = [item.id for item in squashed]
        dependents = (
            session.query(model).filter(model.duplicate_of_id.in_(ids)).all()
        )
        for dependent in dependents:
            dependent.duplicate_of = progenitor
            session.add(dependent)
        if model is Venue:
            for venue in squashed:
                for event in list(venue.events):
                    event.venue = progenitor
                    session.add(event)
        session.flush()
        logger.info(
            "Squashed %s %s into %s",
            model.__name__,
            ids,
            progenitor.id,
        )
    return squashed
