from datetime import datetime, timedelta, timezone

import pytest

from reportshare.services.interfaces import RecentReport, SharedReport
from reportshare.utils.ip_utils import anonymize_ip
from reportshare.utils.report_display import (
    SCORE_COLOR_INDICATORS,
    ScoreColor,
    display_domain,
    display_url,
    format_recent_report_for_display,
    format_time_ago,
    score_color,
)

NOW = datetime(2026, 5, 1, 12, 0, 0)


@pytest.mark.parametrize(
    "score,color",
    [
        (100, ScoreColor.GREEN),
        (80, ScoreColor.GREEN),
        (79, ScoreColor.YELLOW),
        (60, ScoreColor.YELLOW),
        (59, ScoreColor.ORANGE),
        (40, ScoreColor.ORANGE),
        (39, ScoreColor.RED),
        (0, ScoreColor.RED),
        (-5, ScoreColor.RED),
        (None, ScoreColor.RED),
    ],
)
def test_score_color_bands(score, color):
    assert score_color(score) is color


def test_every_color_has_an_indicator():
    assert set(SCORE_COLOR_INDICATORS) == set(ScoreColor)


@pytest.mark.parametrize(
    "delta,expected",
    [
        (timedelta(seconds=5), "5 seconds ago"),
        (timedelta(seconds=60), "60 seconds ago"),
        (timedelta(minutes=5), "5 minutes ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(days=2), "2 days ago"),
        (timedelta(days=65), "2 months ago"),
        (timedelta(days=800), "2 years ago"),
        (timedelta(seconds=-30), "0 seconds ago"),
    ],
)
def test_format_time_ago(delta, expected):
    assert format_time_ago(NOW - delta, now=NOW) == expected


def test_format_time_ago_accepts_aware_datetimes():
    aware = datetime(2026, 5, 1, 11, 0, tzinfo=timezone.utc)
    assert format_time_ago(aware, now=NOW) == "60 minutes ago"


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://www.example.com/path", "example.com"),
        ("https://api.example.com", "api.example.com"),
        ("not a url", "not a url"),
    ],
)
def test_display_domain(url, expected):
    assert display_domain(url) == expected


def test_long_urls_are_shortened_to_domain():
    assert display_url("https://short.io/x", "short.io") == "https://short.io/x"
    long_url = "https://example.com/a/very/long/path/segment"
    assert display_url(long_url, "example.com") == "example.com..."


def test_recent_report_display_payload():
    shared = SharedReport(
        id="cabc",
        url="https://www.example.com/some/really/long/article/path",
        security_score=None,
        slug="example-com-some-really-abc",
        is_public=True,
        owner_id="u1",
        created_at=NOW - timedelta(hours=2),
        has_ai_analysis=True,
    )

    payload = format_recent_report_for_display(RecentReport.from_shared(shared).to_dict(), now=NOW)

    assert payload == {
        "slug": "example-com-some-really-abc",
        "displayUrl": "example.com...",
        "domain": "example.com",
        "securityScore": 0,
        "scoreColor": "red",
        "timeAgo": "2 hours ago",
        "hasAI": True,
    }


def test_shared_report_access_rule():
    base = dict(id="c1", url="https://e.com", security_score=1, slug="e-com", owner_id="u1", created_at=NOW)
    public = SharedReport(is_public=True, **base)
    private = SharedReport(is_public=False, **base)

    assert public.can_be_read_by(None)
    assert private.can_be_read_by("u1")
    assert not private.can_be_read_by("u2")
    assert not private.can_be_read_by(None)
    assert not SharedReport(**dict(base, owner_id=None), is_public=False).can_be_read_by("u1")


def test_shared_report_from_dict_ignores_unknown_keys():
    data = SharedReport(
        id="c1", url="https://e.com", security_score=1, slug="e-com", is_public=True, owner_id=None, created_at=NOW
    ).to_dict()
    data["unexpected"] = "value"
    assert SharedReport.from_dict(data).slug == "e-com"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("203.0.113.42", "203.0.113.0"),
        ("203.0.113.42, 10.0.0.1", "203.0.113.0"),
        ("2001:db8:85a3:8d3:1319:8a2e:370:7348", "2001:db8:85a3:8d3::"),
        ("2001:db8::1", "2001:db8:0:0::"),
        ("::ffff:198.51.100.23", "198.51.100.0"),
        ("garbage.1.2.3", "garbage.1.2.0"),
        ("", None),
        (None, None),
    ],
)
def test_anonymize_ip(raw, expected):
    assert anonymize_ip(raw) == expected
