"""Utility helpers for OpenEvents."""

from __future__ import annotations

from datetime import UTC, date, datetime
import html
import re

from markupsafe import Markup

from .config import settings

_link_pattern = re.compile(r"\[([^\]]+)\]\(([^)]+)\)")
_bold_pattern = re.compile(r"\*\*(.+?)\*\*")
_italic_pattern = re.compile(r"(?<!\*)\*(?!\*)([^*]+?)(?<!\*)\*(?!\*)")
_tag_split = re.compile(r"[,;]")


def utcnow() -> datetime:
    """Return a naive UTC datetime."""

    return datetime.now(UTC).replace(tzinfo=None)


def local_now() -> datetime:
    """Return the current naive wall-clock time in the site time zone."""

    return datetime.now(settings.tzinfo).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def to_utc(value: datetime) -> datetime:
    """Interpret a naive site-local datetime and convert it to aware UTC."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=settings.tzinfo)
    return value.astimezone(UTC)


def parse_tag_list(raw: str | None) -> list[str]:
    """Split a comma separated tag list into unique, lowercase names."""

    names: list[str] = []
    for piece in _tag_split.split(raw or ""):
        name = " ".join(piece.split()).lower()
        if name and name not in names:
            names.append(name)
    return names


def _sanitize_href(raw: str | None) -> str | None:
    """Return a safe URL for anchors or ``None`` when unsafe."""

    normalized = (raw or "").strip()
    if not normalized:
        return None
    lowered = normalized.lower()
    if lowered.startswith(("http://", "https://", "mailto:")) or normalized.startswith(
        ("/", "#")
    ):
        return html.escape(normalized, quote=True)
    return None


def _render_inline(text: str) -> str:
    bolded = _bold_pattern.sub(lambda match: f"<strong>{match.group(1)}</strong>", text)
    emphasized = _italic_pattern.sub(lambda match: f"<em>{match.group(1)}</em>", bolded)

    def replace_link(match: re.Match[str]) -> str:
        href = _sanitize_href(html.unescape(match.group(2)))
        if not href:
            return match.group(0)
        return f'<a href="{href}" rel="nofollow noopener noreferrer">{match.group(1)}</a>'

    return _link_pattern.sub(replace_link, emphasized)


def render_markdown(value: str | None) -> Markup:
    """Render an event description as escaped paragraphs with inline markup."""

    if not value:
        return Markup("")
    escaped = html.escape(value.strip())
    paragraphs = [
        " ".join(line.strip() for line in block.splitlines())
        for block in re.split(r"\n\s*\n", escaped)
    ]
    return Markup(
        "\n".join(f"<p>{_render_inline(text)}</p>" for text in paragraphs if text)
    )


def format_time_range(start: datetime | None, end: datetime | None) -> str:
    """Return a short human label such as 'Sat, Mar 2 7:00pm - 9:30pm'."""
    if not start:
        return ""

    def _clock(value: datetime) -> str:
        return value.strftime("%I:%M%p").lstrip("0").lower()

    label = f"{start.strftime('%a, %b')} {start.day} {_clock(start)}"
    if not end:
        return label
    if end.date() == start.date():
        return f"{label} - {_clock(end)}"
    return f"{label} - {end.strftime('%a, %b')} {end.day} {_clock(end)}"


_nested_key = re.compile(r"^(?P<section>[^\[\]]+)\[(?P<key>[^\[\]]*)\]$")


def nested_params(items) -> dict:
    """Group ``section[key]=value`` pairs into ``{"section": {"key": value}}``.

    ``items`` is an iterable of ``(name, value)`` pairs such as
    ``request.query_params.multi_items()``. Plain names map to their value;
    when a name is used both plainly and as a section, the section wins.
    """
    params: dict = {}
    for name, value in items:
        match = _nested_key.match(name)
        if match:
            section = params.get(match.group("section"))
            if not isinstance(section, dict):
                section = params[match.group("section")] = {}
            section[match.group("key")] = value
        elif not isinstance(params.get(name), dict):
            params[name] = value
    return params
