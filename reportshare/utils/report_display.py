"""Presentation helpers shared by share payloads and realtime events.

Synopsis:
Maps security scores to colour bands, renders relative times, and builds the
compact ``DisplayReport`` payload pushed to the recent-reports channel.

Glossary:
- Colour band: green >= 80, yellow >= 60, orange >= 40, otherwise red.
- Display URL: Raw URL, or ``domain...`` when the URL exceeds 30 characters.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping
from urllib.parse import urlsplit

from .datetime_helpers import as_naive_utc, utc_now

MAX_DISPLAY_URL_LENGTH = 30


class ScoreColor(str, Enum):
    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"


SCORE_COLOR_INDICATORS: dict[ScoreColor, str] = {
    ScoreColor.GREEN: "\U0001F7E2",
    ScoreColor.YELLOW: "\U0001F7E1",
    ScoreColor.ORANGE: "\U0001F7E0",
    ScoreColor.RED: "\U0001F534",
}

# Lower bound (inclusive) for each band, checked top-down.
_SCORE_BANDS: tuple[tuple[int, ScoreColor], ...] = (
    (80, ScoreColor.GREEN),
    (60, ScoreColor.YELLOW),
    (40, ScoreColor.ORANGE),
)

_TIME_UNITS: tuple[tuple[int, str], ...] = (
    (31536000, "years"),
    (2592000, "months"),
    (86400, "days"),
    (3600, "hours"),
    (60, "minutes"),
)


def validate_display_tables() -> None:
    missing = [color.value for color in ScoreColor if color not in SCORE_COLOR_INDICATORS]
    if missing:
        raise RuntimeError(f"Score colours without a display indicator: {missing}")
    thresholds = [threshold for threshold, _ in _SCORE_BANDS]
    if thresholds != sorted(thresholds, reverse=True):
        raise RuntimeError("Score bands must be ordered from highest threshold to lowest")


def score_color(score: int | None) -> ScoreColor:
    if score is None or score < 0:
        return ScoreColor.RED
    for threshold, color in _SCORE_BANDS:
        if score >= threshold:
            return color
    return ScoreColor.RED


def score_indicator(score: int | None) -> str:
    return SCORE_COLOR_INDICATORS[score_color(score)]


def display_domain(url: str) -> str:
    """Hostname without ``www.``; the raw input when it does not parse."""
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return url
    if not hostname:
        return url
    return hostname[4:] if hostname.startswith("www.") else hostname


def format_time_ago(moment: datetime, *, now: datetime | None = None) -> str:
    reference = as_naive_utc(now) if now is not None else utc_now()
    seconds = int((reference - as_naive_utc(moment)).total_seconds())
    seconds = max(seconds, 0)
    for unit_seconds, label in _TIME_UNITS:
        interval = seconds / unit_seconds
        if interval > 1:
            return f"{int(interval)} {label} ago"
    return f"{seconds} seconds ago"


def display_url(url: str, domain: str) -> str:
    if len(url) > MAX_DISPLAY_URL_LENGTH:
        return f"{domain}..."
    return url


def format_recent_report_for_display(report: Mapping[str, Any], *, now: datetime | None = None) -> dict:
    """Build the ``DisplayReport`` payload for the realtime channel."""
    url = report["url"]
    domain = report.get("domain") or display_domain(url)
    score = report.get("security_score")
    return {
        "slug": report["slug"],
        "displayUrl": display_url(url, domain),
        "domain": domain,
        "securityScore": score if score is not None else 0,
        "scoreColor": score_color(score).value,
        "timeAgo": format_time_ago(report["created_at"], now=now),
        "hasAI": bool(report.get("has_ai_analysis")),
    }


validate_display_tables()
