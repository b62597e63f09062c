"""Privacy-compliant engagement tracking and aggregate metrics.

Synopsis:
Records report views and share attempts after Do Not Track and IP
anonymisation, and serves engagement, dashboard, funnel and realtime metrics.
Tracking never raises; aggregate reads are cache-aside.

Glossary:
- Viral coefficient: Successful shares divided by views in the window.
- Conversion rate: Successful shares per hundred views.
- Funnel: created -> viewed at least once -> shared successfully at least once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping

from ..errors import ValidationError
from ..utils.datetime_helpers import day_range, days_ago, utc_now
from ..utils.ip_utils import anonymize_ip
from . import cache_keys
from .interfaces import ReportAnalytics, ReportCache
from .report_store import ReportStore

logger = logging.getLogger(__name__)

TOP_LIST_LIMIT = 10
REALTIME_WINDOW_HOURS = 24


class ShareMethod(str, Enum):
    NATIVE = "native"
    COPY = "copy"
    QR = "qr"
    SOCIAL = "social"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"
    FACEBOOK = "facebook"
    EMAIL = "email"


def normalize_share_method(method: str | None) -> ShareMethod:
    try:
        return ShareMethod(str(method or "").strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown share method: {method!r}") from exc


def ratio(numerator: int | float, denominator: int | float) -> float:
    return numerator / denominator if denominator else 0


class AnalyticsService(ReportAnalytics):
    def __init__(
        self,
        store: ReportStore,
        cache: ReportCache,
        *,
        respect_do_not_track: bool = True,
        anonymize_ips: bool = True,
        retention_days: int = 90,
        engagement_ttl: int = 1800,
        dashboard_ttl: int = 3600,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.cache = cache
        self.respect_do_not_track = respect_do_not_track
        self.anonymize_ips = anonymize_ips
        self.retention_days = retention_days
        self.engagement_ttl = engagement_ttl
        self.dashboard_ttl = dashboard_ttl
        self._clock = clock

    def _ip(self, raw: str | None) -> str | None:
        if not raw:
            return None
        return anonymize_ip(raw) if self.anonymize_ips else raw

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_view(self, data: Mapping[str, Any], do_not_track: bool = False) -> bool:
        """Persist a view. Returns False when skipped or when recording failed."""
        if self.respect_do_not_track and do_not_track:
            return False

        report_id = data.get("report_id")
        try:
            self.store.insert_view(
                report_id=report_id,
                viewer_ip=self._ip(data.get("viewer_ip")),
                user_agent=data.get("user_agent"),
                referrer=data.get("referrer"),
                country=data.get("country"),
            )
        except Exception:
            logger.warning("Failed to track view for report %s", report_id, exc_info=True)
            return False

        self._invalidate_view_caches(report_id)
        return True

    def track_share_event(self, data: Mapping[str, Any]) -> bool:
        report_id = data.get("report_id")
        success = bool(data.get("success"))
        try:
            method = normalize_share_method(data.get("share_method"))
            self.store.record_share_event(
                report_id=report_id,
                share_method=method.value,
                success=success,
                user_agent=data.get("user_agent"),
                referrer=data.get("referrer"),
                ip_address=self._ip(data.get("ip_address")),
            )
        except ValidationError as exc:
            logger.warning("Rejected share event for report %s: %s", report_id, exc.message)
            return False
        except Exception:
            logger.warning("Failed to track share event for report %s", report_id, exc_info=True)
            return False

        self._invalidate_share_caches(report_id)
        return True

    def _invalidate_view_caches(self, report_id: str) -> None:
        self.cache.delete(cache_keys.engagement_key(report_id))
        self.cache.delete_pattern(cache_keys.DASHBOARD_PATTERN)
        self.cache.delete_pattern(cache_keys.REPORT_STATS_PATTERN)

    def _invalidate_share_caches(self, report_id: str) -> None:
        self.cache.delete(cache_keys.engagement_key(report_id))
        self.cache.delete(cache_keys.share_analytics_key(report_id))
        self.cache.delete_pattern(cache_keys.DASHBOARD_PATTERN)
        self.cache.delete_pattern(cache_keys.REPORT_STATS_PATTERN)

    # ------------------------------------------------------------------
    # Per-report metrics
    # ------------------------------------------------------------------

    def get_engagement_metrics(self, report_id: str) -> dict:
        key = cache_keys.engagement_key(report_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        total_views = self.store.count_views(report_id=report_id)
        shares_by_method = {
            method: successful
            for method, _total, successful in self.store.share_method_breakdown(report_id=report_id)
            if successful
        }
        total_shares = sum(shares_by_method.values())
        metrics = {
            "total_views": total_views,
            "unique_views": self.store.count_distinct_viewers(report_id),
            "total_shares": total_shares,
            "shares_by_method": shares_by_method,
            "conversion_rate": ratio(total_shares, total_views) * 100,
            "top_referrers": [
                {"referrer": referrer or "Direct", "count": count}
                for referrer, count in self.store.top_view_values(report_id, "referrer", TOP_LIST_LIMIT)
            ],
            "geographic_distribution": [
                {"country": country or "Unknown", "count": count}
                for country, count in self.store.top_view_values(report_id, "country", TOP_LIST_LIMIT)
            ],
        }
        self.cache.set(key, metrics, self.engagement_ttl)
        return metrics

    def get_realtime_analytics(self, report_id: str) -> dict:
        now = self._clock()
        since = now - timedelta(hours=REALTIME_WINDOW_HOURS)
        current_hour = now.replace(minute=0, second=0, microsecond=0)
        first_hour = current_hour - timedelta(hours=REALTIME_WINDOW_HOURS - 1)

        buckets = {first_hour + timedelta(hours=offset): 0 for offset in range(REALTIME_WINDOW_HOURS)}
        for moment in self.store.view_timestamps(report_id, first_hour):
            hour = moment.replace(minute=0, second=0, microsecond=0)
            if hour in buckets:
                buckets[hour] += 1

        return {
            "last_24_hours": {
                "views": self.store.count_views(report_id=report_id, since=since),
                "shares": self.store.count_share_events(report_id=report_id, since=since),
            },
            "hourly_breakdown": [
                {"hour": hour.isoformat(), "views": count} for hour, count in buckets.items()
            ],
            "timestamp": now.isoformat(),
        }

    # ------------------------------------------------------------------
    # Owner / global aggregates
    # ------------------------------------------------------------------

    def get_dashboard_data(self, owner_id: str | None = None, days: int = 30) -> dict:
        key = cache_keys.dashboard_key(owner_id, days)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        now = self._clock()
        since = days_ago(days, now=now)
        total_views = self.store.count_views(owner_id=owner_id, since=since)
        total_shares = self.store.count_share_events(owner_id=owner_id, since=since)

        dashboard = {
            "overview": {
                "total_reports": self.store.count_reports(owner_id=owner_id),
                "total_views": total_views,
                "total_shares": total_shares,
                "average_security_score": round(self.store.average_security_score(owner_id), 2),
            },
            "trends": self._trends(since, now, owner_id),
            "top_reports": [
                {
                    "slug": report.slug,
                    "url": report.url,
                    "views": views,
                    "shares": int(report.share_count or 0),
                    "security_score": report.security_score or 0,
                }
                for report, views in self.store.top_public_reports(owner_id, TOP_LIST_LIMIT)
            ],
            "sharing_methods": [
                {
                    "method": method,
                    "count": total,
                    "success_rate": ratio(successful, total) * 100,
                }
                for method, total, successful in self.store.share_method_breakdown(
                    owner_id=owner_id, since=since
                )
            ],
            "viral_coefficient": ratio(total_shares, total_views),
        }
        self.cache.set(key, dashboard, self.dashboard_ttl)
        return dashboard

    def _trends(self, since: datetime, now: datetime, owner_id: str | None) -> dict:
        views = self.store.daily_view_counts(since, owner_id)
        shares = self.store.daily_share_counts(since, owner_id)
        reports = self.store.daily_report_counts(since, owner_id)
        days = day_range(since, now)
        return {
            "views_over_time": [{"date": d.isoformat(), "views": views.get(d, 0)} for d in days],
            "shares_over_time": [{"date": d.isoformat(), "shares": shares.get(d, 0)} for d in days],
            "reports_over_time": [{"date": d.isoformat(), "reports": reports.get(d, 0)} for d in days],
        }

    def get_viral_coefficient(self, owner_id: str | None = None, days: int = 30) -> float:
        since = days_ago(days, now=self._clock())
        total_views = self.store.count_views(owner_id=owner_id, since=since)
        total_shares = self.store.count_share_events(owner_id=owner_id, since=since)
        return ratio(total_shares, total_views)

    def get_conversion_funnel(self, owner_id: str | None = None, days: int = 30) -> dict:
        since = days_ago(days, now=self._clock())
        created = self.store.count_reports(owner_id=owner_id, since=since)
        viewed = self.store.count_reports(owner_id=owner_id, since=since, with_views=True)
        # Each step narrows the previous one, so counts never increase.
        shared = self.store.count_reports(
            owner_id=owner_id, since=since, with_views=True, with_successful_shares=True
        )

        total_views = self.store.count_views(owner_id=owner_id, since=since)
        total_shares = self.store.count_share_events(owner_id=owner_id, since=since)
        return {
            "steps": [
                {"name": "Reports Created", "count": created, "percentage": 100 if created else 0},
                {"name": "Reports Viewed", "count": viewed, "percentage": ratio(viewed, created) * 100},
                {"name": "Reports Shared", "count": shared, "percentage": ratio(shared, created) * 100},
            ],
            "metrics": {
                "views_per_report": ratio(total_views, created),
                "shares_per_report": ratio(total_shares, created),
                "share_conversion_rate": ratio(total_shares, total_views) * 100,
            },
        }

    def get_recent_activity(self, hours: int = REALTIME_WINDOW_HOURS) -> dict:
        since = self._clock() - timedelta(hours=hours)
        return {
            "views": self.store.count_views(since=since),
            "shares": self.store.count_share_events(since=since, successful_only=False),
        }

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old_data(self) -> dict:
        """Delete view/share rows older than the retention window. Idempotent."""
        cutoff = days_ago(self.retention_days, now=self._clock())
        deleted_views = self.store.delete_views_before(cutoff)
        deleted_shares = self.store.delete_share_events_before(cutoff)
        logger.info(
            "Cleaned up %s old view records and %s old share records (cutoff %s)",
            deleted_views,
            deleted_shares,
            cutoff.isoformat(),
        )
        if deleted_views or deleted_shares:
            self.cache.delete_pattern(cache_keys.DASHBOARD_PATTERN)
            self.cache.delete_pattern(cache_keys.REPORT_STATS_PATTERN)
        return {"deleted_views": deleted_views, "deleted_shares": deleted_shares, "cutoff": cutoff}
