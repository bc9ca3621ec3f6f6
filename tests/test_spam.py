from __future__ import annotations

from openevents.spam import (
    EVIL_ROBOT_MESSAGE,
    count_links,
    is_robot,
    is_spammy,
    spam_failures,
)


def _links(count: int) -> str:
    return " ".join(f"see http://example.com/{index}" for index in range(count))


def test_count_links_is_case_insensitive():
    assert count_links("HTTP://a.example and https://b.example") == 2
    assert count_links(None) == 0


def test_link_limit_boundary():
    assert is_spammy(_links(3)) is False
    assert is_spammy(_links(4)) is True


def test_custom_limit():
    assert is_spammy(_links(2), limit=1) is True
    assert is_spammy("", limit=0) is False


def test_honeypot_detects_robots():
    assert is_robot("I am a robot")
    assert not is_robot("")
    assert not is_robot("   ")
    assert not is_robot(None)


def test_spam_failures_collects_every_reason():
    failures = spam_failures(_links(5), "filled")
    assert failures[0] == EVIL_ROBOT_MESSAGE
    assert "We allow a maximum of 3 links in a description." in failures[1]
    assert spam_failures("Just a description", "") == []
