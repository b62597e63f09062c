from __future__ import annotations

__all__ = [
    "report_key",
    "recent_reports_key",
    "share_analytics_key",
    "user_reports_key",
    "report_stats_key",
    "engagement_key",
    "dashboard_key",
    "USER_REPORTS_PATTERN",
    "REPORT_STATS_PATTERN",
    "DASHBOARD_PATTERN",
]

_REPORT_KEY = "report:{slug}"
_RECENT_REPORTS_KEY = "recentReports"
_SHARE_ANALYTICS_KEY = "shareAnalytics:{report_id}"
_USER_REPORTS_KEY = "userReports:{owner_id}"
_REPORT_STATS_KEY = "reportStats:{owner_id}"
_ENGAGEMENT_KEY = "engagement:{report_id}"
_DASHBOARD_KEY = "dashboard:{owner_id}:{days}"

USER_REPORTS_PATTERN = "userReports:*"
REPORT_STATS_PATTERN = "reportStats:*"
DASHBOARD_PATTERN = "dashboard:*"


def _owner_scope(owner_id: str | None) -> str:
    return str(owner_id or "global")


def report_key(slug: str) -> str:
    return _REPORT_KEY.format(slug=slug)


def recent_reports_key() -> str:
    return _RECENT_REPORTS_KEY


def share_analytics_key(report_id: str) -> str:
    return _SHARE_ANALYTICS_KEY.format(report_id=report_id)


def user_reports_key(owner_id: str) -> str:
    return _USER_REPORTS_KEY.format(owner_id=owner_id)


def report_stats_key(owner_id: str | None = None) -> str:
    return _REPORT_STATS_KEY.format(owner_id=_owner_scope(owner_id))


def engagement_key(report_id: str) -> str:
    return _ENGAGEMENT_KEY.format(report_id=report_id)


def dashboard_key(owner_id: str | None, days: int) -> str:
    return _DASHBOARD_KEY.format(owner_id=_owner_scope(owner_id), days=int(days))
