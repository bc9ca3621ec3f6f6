from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from openevents.utils import (
    format_time_range,
    nested_params,
    parse_tag_list,
    render_markdown,
    to_utc,
)


def test_parse_tag_list_splits_and_dedupes():
    assert parse_tag_list(" Python, web  dev;python ,, ") == ["python", "web dev"]
    assert parse_tag_list(None) == []


def test_nested_params_groups_sections():
    params = nested_params(
        [
            ("event[title]", "Launch"),
            ("event[url]", "example.com"),
            ("venue_name", "Hall"),
            ("date[start]", "2024-01-01"),
            ("date", "stray"),
        ]
    )
    assert params == {
        "event": {"title": "Launch", "url": "example.com"},
        "venue_name": "Hall",
        "date": {"start": "2024-01-01"},
    }


def test_render_markdown_renders_paragraphs_and_inline_markup():
    text = """
    This is **bold**, *italic*, and a [link](https://example.com).

    <script>alert(1)</script>
    """
    html = render_markdown(text)
    assert "<p>This is <strong>bold</strong>, <em>italic</em>, and a " in html
    assert '<a href="https://example.com"' in html
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_render_markdown_rejects_unsafe_links():
    text = "[bad](javascript:alert(1)) ok"
    html = render_markdown(text)
    assert "javascript:alert" in html  # left as text
    assert "<a" not in html


def test_format_time_range_same_and_multi_day():
    start = datetime(2024, 3, 2, 19, 0)
    assert format_time_range(start, start + timedelta(hours=2, minutes=30)) == (
        "Sat, Mar 2 7:00pm - 9:30pm"
    )
    assert format_time_range(start, datetime(2024, 3, 3, 1, 0)) == (
        "Sat, Mar 2 7:00pm - Sun, Mar 3 1:00am"
    )
    assert format_time_range(None, None) == ""


def test_to_utc_keeps_aware_values():
    aware = datetime(2024, 6, 1, 9, 0, tzinfo=timezone(timedelta(hours=-5)))
    assert to_utc(aware) == datetime(2024, 6, 1, 14, 0, tzinfo=UTC)
    assert to_utc(datetime(2024, 6, 1, 9, 0)).tzinfo is UTC
