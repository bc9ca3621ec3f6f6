from __future__ import annotations

from datetime import datetime

import pytest

from openevents.duplicates import DuplicateCycleError, progenitor_of, squash_duplicates
from openevents.models import Event

START = datetime(2030, 3, 1, 18, 0)


def test_progenitor_of_canonical_record_is_itself():
    event = Event(title="Solo", start_time=START)
    assert progenitor_of(event) is event


def test_progenitor_follows_the_whole_chain_and_is_idempotent():
    root = Event(title="Root", start_time=START)
    middle = Event(title="Middle", start_time=START, duplicate_of=root)
    leaf = Event(title="Leaf", start_time=START, duplicate_of=middle)
    assert progenitor_of(leaf) is root
    assert progenitor_of(progenitor_of(leaf)) is root


def test_cycle_raises_instead_of_looping():
    first = Event(title="First", start_time=START)
    second = Event(title="Second", start_time=START, duplicate_of=first)
    first.duplicate_of = second
    with pytest.raises(DuplicateCycleError):
        progenitor_of(first)


def test_dangling_reference_raises():
    orphan = Event(title="Orphan", start_time=START, duplicate_of_id=999)
    with pytest.raises(DuplicateCycleError):
        progenitor_of(orphan)


def test_squash_points_duplicates_at_the_master(session, make_event):
    master = make_event("Master", start_time=START)
    copy = make_event("Copy", start_time=START)
    squashed = squash_duplicates(session, master, [copy])
    session.commit()
    assert squashed == [copy]
    assert copy.duplicate_of_id == master.id


def test_squash_repoints_existing_dependents(session, make_event):
    keeper = make_event("Keeper", start_time=START)
    middle = make_event("Middle", start_time=START)
    leaf = make_event("Leaf", start_time=START, duplicate_of=middle)
    squash_duplicates(session, keeper, [middle])
    session.commit()
    assert middle.duplicate_of_id == keeper.id
    assert leaf.duplicate_of_id == keeper.id


def test_squash_into_itself_is_rejected(session, make_event):
    master = make_event("Master", start_time=START)
    with pytest.raises(ValueError):
        squash_duplicates(session, master, [master])


def test_squashing_venues_moves_their_events(session, make_venue, make_event):
    keeper = make_venue("Main Library")
    copy = make_venue("Main Library (old)")
    event = make_event("Reading", start_time=START, venue=copy)
    squash_duplicates(session, keeper, [copy])
    session.commit()
    assert copy.duplicate_of_id == keeper.id
    assert event.venue_id == keeper.id
