"""Report reads with view tracking, plus derived insights.

Synopsis:
Composes the cached report service and the analytics service. Reads optionally
record a view; analytics failures never affect the returned report.

Glossary:
- Trend score: Recent views plus three times recent successful shares.
- Insight: ``{type, title, description, metric?, recommendation}`` hint derived
  from dashboard, viral and funnel metrics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..utils.datetime_helpers import days_ago, utc_now
from .analytics_service import AnalyticsService
from .cached_report_service import CachedReportService
from .interfaces import SharedReport
from .report_store import ReportStore

logger = logging.getLogger(__name__)

SHARE_TREND_WEIGHT = 3
LOW_VIRAL_COEFFICIENT = 0.1
HIGH_VIRAL_COEFFICIENT = 0.5
LOW_SHARE_CONVERSION_RATE = 5
INSIGHT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class IntegrationOptions:
    enable_view_tracking: bool = True
    enable_share_tracking: bool = True
    enable_engagement_metrics: bool = True

    @classmethod
    def from_config(cls, config: Mapping) -> "IntegrationOptions":
        return cls(
            enable_view_tracking=bool(config.get("ENABLE_VIEW_TRACKING", True)),
            enable_share_tracking=bool(config.get("ENABLE_SHARE_TRACKING", True)),
            enable_engagement_metrics=bool(config.get("ENABLE_ENGAGEMENT_METRICS", True)),
        )


class IntegratedService:
    def __init__(
        self,
        reports: CachedReportService,
        analytics: AnalyticsService,
        store: ReportStore,
        options: IntegrationOptions | None = None,
    ) -> None:
        self.reports = reports
        self.analytics = analytics
        self.store = store
        self.options = options or IntegrationOptions()

    def _track(self, report: SharedReport | None, tracking: Mapping[str, Any] | None) -> None:
        if report is None or tracking is None or not self.options.enable_view_tracking:
            return
        self.analytics.track_view(
            {
                "report_id": report.id,
                "viewer_ip": tracking.get("viewer_ip"),
                "user_agent": tracking.get("user_agent"),
                "referrer": tracking.get("referrer"),
                "country": tracking.get("country"),
            },
            bool(tracking.get("do_not_track")),
        )

    def get_report_by_slug_with_tracking(
        self,
        slug: str,
        caller_id: str | None = None,
        tracking: Mapping[str, Any] | None = None,
    ) -> SharedReport | None:
        report = self.reports.get_report_by_slug(slug, caller_id)
        self._track(report, tracking)
        return report

    def get_public_report_by_slug_with_tracking(
        self, slug: str, tracking: Mapping[str, Any] | None = None
    ) -> SharedReport | None:
        report = self.reports.get_public_report_by_slug(slug)
        self._track(report, tracking)
        return report

    def track_share_event(self, data: Mapping[str, Any]) -> bool:
        if not self.options.enable_share_tracking:
            return False
        return self.reports.track_share_event(data)

    def get_report_analytics(self, report_id: str, caller_id: str | None = None) -> dict:
        return {
            "sharing": self.reports.get_share_analytics(report_id, caller_id),
            "engagement": (
                self.analytics.get_engagement_metrics(report_id)
                if self.options.enable_engagement_metrics
                else None
            ),
            "realtime": self.analytics.get_realtime_analytics(report_id),
        }

    def get_enhanced_dashboard_data(self, owner_id: str | None = None, days: int = 30) -> dict:
        return {
            "report_stats": self.reports.get_report_statistics(owner_id),
            "analytics": self.analytics.get_dashboard_data(owner_id, days),
            "viral_coefficient": self.analytics.get_viral_coefficient(owner_id, days),
            "conversion_funnel": self.analytics.get_conversion_funnel(owner_id, days),
            "timestamp": utc_now().isoformat(),
        }

    def get_trending_reports(self, limit: int = 10, days: int = 7) -> list[dict]:
        since = days_ago(days)
        trending = [
            {
                "slug": report.slug,
                "url": report.url,
                "security_score": report.security_score,
                "recent_views": views,
                "recent_shares": shares,
                "total_shares": int(report.share_count or 0),
                "trend_score": views + SHARE_TREND_WEIGHT * shares,
            }
            for report, views, shares in self.store.trending_candidates(since, limit)
        ]
        trending.sort(key=lambda item: item["trend_score"], reverse=True)
        return trending

    def get_performance_insights(self, owner_id: str | None = None) -> dict:
        dashboard = self.analytics.get_dashboard_data(owner_id, INSIGHT_WINDOW_DAYS)
        viral = self.analytics.get_viral_coefficient(owner_id, INSIGHT_WINDOW_DAYS)
        funnel = self.analytics.get_conversion_funnel(owner_id, INSIGHT_WINDOW_DAYS)
        share_conversion_rate = funnel["metrics"]["share_conversion_rate"]

        insights = []
        if viral < LOW_VIRAL_COEFFICIENT:
            insights.append({
                "type": "warning",
                "title": "Low Viral Coefficient",
                "description": "Your reports are not being shared frequently. Consider improving share button placement or adding incentives.",
                "metric": viral,
                "recommendation": "Add more prominent sharing buttons and social proof elements.",
            })
        elif viral > HIGH_VIRAL_COEFFICIENT:
            insights.append({
                "type": "success",
                "title": "High Viral Coefficient",
                "description": "Your reports are being shared frequently! This is driving organic growth.",
                "metric": viral,
                "recommendation": "Continue current strategy and consider expanding to more platforms.",
            })

        if share_conversion_rate < LOW_SHARE_CONVERSION_RATE:
            insights.append({
                "type": "warning",
                "title": "Low Share Conversion Rate",
                "description": "Few viewers are sharing your reports. The content might not be compelling enough.",
                "metric": share_conversion_rate,
                "recommendation": "Improve report design and add clear value propositions for sharing.",
            })

        top_reports = dashboard["top_reports"][:3]
        if top_reports:
            mean_score = round(sum(r["security_score"] for r in top_reports) / len(top_reports))
            insights.append({
                "type": "info",
                "title": "Top Performing Reports",
                "description": f"Your best performing reports have security scores averaging {mean_score}.",
                "recommendation": "Analyze what makes these reports successful and apply similar patterns to new reports.",
            })

        return {
            "insights": insights,
            "metrics": {
                "viral_coefficient": viral,
                "share_conversion_rate": share_conversion_rate,
                "average_views_per_report": funnel["metrics"]["views_per_report"],
                "average_shares_per_report": funnel["metrics"]["shares_per_report"],
            },
            "recommendations": [insight["recommendation"] for insight in insights],
        }

    def cleanup_analytics_data(self) -> dict:
        return self.analytics.cleanup_old_data()

    def get_analytics_health(self) -> dict:
        health = self.reports.health_check()
        try:
            activity = self.analytics.get_recent_activity()
            health["analytics"] = {"status": "healthy", "recent_activity": activity}
        except Exception as exc:
            logger.warning("Analytics health probe failed", exc_info=True)
            health["analytics"] = {"status": "unhealthy", "error": str(exc)}
        return health
