"""Advisory checks that keep spam and bots from saving events."""

from __future__ import annotations

import re

from .config import settings

_link_pattern = re.compile(r"https?://", re.IGNORECASE)

TOO_MANY_LINKS_MESSAGE = (
    "We allow a maximum of {limit} links in a description. You have too many links."
)
EVIL_ROBOT_MESSAGE = (
    "We didn't save this event because we think you're an evil robot. "
    "If you're really not an evil robot, look at the form instructions more "
    "carefully. If this doesn't work please file a bug report and let us know."
)


def count_links(text: str | None) -> int:
    if not text:
        return 0
    return len(_link_pattern.findall(text))


def is_spammy(text: str | None, limit: int | None = None) -> bool:
    """Return True when ``text`` carries more links than ``limit`` allows."""
    if limit is None:
        limit = settings.max_description_links
    return bool(text) and count_links(text) > limit


def is_robot(trap_field: str | None) -> bool:
    """Return True when the hidden honeypot field was filled in."""
    return bool(trap_field and trap_field.strip())


def spam_failures(description: str | None, trap_field: str | None) -> list[str]:
    """Return the user-facing reasons a submission must not be saved."""
    failures: list[str] = []
    if is_robot(trap_field):
        failures.append(EVIL_ROBOT_MESSAGE)
    if is_spammy(description):
        failures.append(
            TOO_MANY_LINKS_MESSAGE.format(limit=settings.max_description_links)
        )
    return failures
