"""Cache-aside reads and invalidate-on-write around a ``ReportAccess``.

Synopsis:
Wraps any ``ReportAccess`` implementation with a ``ReportCache``. Reads try the
cache first and always re-check access against the cached snapshot; every
mutation clears the report, recent-list, share-analytics, per-user and
statistics keys once the wrapped call succeeds.

Glossary:
- Global entry: ``report:<slug>`` is shared by every caller; private snapshots
  are only written when a caller id was present and are re-validated per read.
- Backstop TTL: Short expiry on list keys that bounds staleness when an
  invalidation is lost.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from ..errors import AccessDenied
from . import cache_keys
from .interfaces import RecentReport, ReportAccess, ReportAnalytics, ReportCache, SharedReport

logger = logging.getLogger(__name__)

PRELOAD_RECENT_LIMIT = 20


@dataclass(frozen=True)
class CacheTTLs:
    report: int = 3600
    recent_reports: int = 300
    share_analytics: int = 1800
    user_reports: int = 900
    report_stats: int = 1800

    @classmethod
    def from_config(cls, config: Mapping) -> "CacheTTLs":
        return cls(
            report=int(config.get("REPORT_CACHE_TTL", cls.report)),
            recent_reports=int(config.get("RECENT_REPORTS_CACHE_TTL", cls.recent_reports)),
            share_analytics=int(config.get("SHARE_ANALYTICS_CACHE_TTL", cls.share_analytics)),
            user_reports=int(config.get("USER_REPORTS_CACHE_TTL", cls.user_reports)),
            report_stats=int(config.get("REPORT_STATS_CACHE_TTL", cls.report_stats)),
        )


class CachedReportService(ReportAccess):
    def __init__(
        self,
        inner: ReportAccess,
        cache: ReportCache,
        *,
        analytics: ReportAnalytics | None = None,
        ttls: CacheTTLs | None = None,
    ) -> None:
        self.inner = inner
        self.cache = cache
        self.analytics = analytics
        self.ttls = ttls or CacheTTLs()

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _invalidate_report_caches(self, record_id: str, *slugs: str | None) -> None:
        for slug in {s for s in slugs if s}:
            self.cache.delete(cache_keys.report_key(slug))
        self.cache.delete(cache_keys.recent_reports_key())
        self.cache.delete(cache_keys.share_analytics_key(record_id))
        self.cache.delete_pattern(cache_keys.USER_REPORTS_PATTERN)
        self.cache.delete_pattern(cache_keys.REPORT_STATS_PATTERN)

    def _current_slug(self, record_id: str) -> str | None:
        report = self.inner.get_report(record_id)
        return report.slug if report else None

    # ------------------------------------------------------------------
    # Report reads
    # ------------------------------------------------------------------

    def get_report(self, record_id: str) -> SharedReport | None:
        return self.inner.get_report(record_id)

    def _cached_report(self, slug: str) -> SharedReport | None:
        cached = self.cache.get(cache_keys.report_key(slug))
        if cached is None:
            return None
        try:
            return SharedReport.from_dict(cached)
        except (TypeError, ValueError):
            logger.warning("Discarding malformed cached report for slug %s", slug)
            self.cache.delete(cache_keys.report_key(slug))
            return None

    def get_report_by_slug(self, slug: str, caller_id: str | None = None) -> SharedReport | None:
        cached = self._cached_report(slug)
        if cached is not None:
            return cached if cached.can_be_read_by(caller_id) else None

        report = self.inner.get_report_by_slug(slug, caller_id)
        if report is not None and (report.is_public or caller_id):
            self.cache.set(cache_keys.report_key(slug), report.to_dict(), self.ttls.report)
        return report

    def get_public_report_by_slug(self, slug: str) -> SharedReport | None:
        cached = self._cached_report(slug)
        if cached is not None and cached.is_public:
            return cached

        report = self.inner.get_public_report_by_slug(slug)
        if report is not None:
            self.cache.set(cache_keys.report_key(slug), report.to_dict(), self.ttls.report)
        return report

    def get_recent_reports(self, limit: int = 10) -> list[RecentReport]:
        key = cache_keys.recent_reports_key()
        cached = self.cache.get(key)
        if cached is not None and int(cached.get("limit", 0)) >= limit:
            return [RecentReport.from_dict(item) for item in cached.get("items", [])[:limit]]

        reports = self.inner.get_recent_reports(limit)
        self._store_recent(reports, limit)
        return reports

    def _store_recent(self, reports: list[RecentReport], limit: int) -> None:
        self.cache.set(
            cache_keys.recent_reports_key(),
            {"limit": limit, "items": [report.to_dict() for report in reports]},
            self.ttls.recent_reports,
        )

    def get_share_analytics(self, record_id: str, caller_id: str | None = None) -> dict:
        key = cache_keys.share_analytics_key(record_id)
        cached = self.cache.get(key)
        if cached is not None:
            if caller_id:
                report = self.inner.get_report(record_id)
                if report is None or report.owner_id != caller_id:
                    raise AccessDenied()
            return cached

        analytics = self.inner.get_share_analytics(record_id, caller_id)
        self.cache.set(key, analytics, self.ttls.share_analytics)
        return analytics

    def get_user_shareable_reports(self, owner_id: str, limit: int = 20) -> list[SharedReport]:
        key = cache_keys.user_reports_key(owner_id)
        cached = self.cache.get(key)
        if cached is not None and int(cached.get("limit", 0)) >= limit:
            return [SharedReport.from_dict(item) for item in cached.get("items", [])[:limit]]

        reports = self.inner.get_user_shareable_reports(owner_id, limit)
        self.cache.set(
            key,
            {"limit": limit, "items": [report.to_dict() for report in reports]},
            self.ttls.user_reports,
        )
        return reports

    def get_report_statistics(self, owner_id: str | None = None) -> dict:
        key = cache_keys.report_stats_key(owner_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        stats = self.inner.get_report_statistics(owner_id)
        self.cache.set(key, stats, self.ttls.report_stats)
        return stats

    def validate_slug(self, slug: str, exclude_id: str | None = None) -> bool:
        return self.inner.validate_slug(slug, exclude_id)

    def generate_share_data(self, report: SharedReport) -> dict:
        return self.inner.generate_share_data(report)

    def format_report_for_public_display(self, report: SharedReport) -> dict:
        return self.inner.format_report_for_public_display(report)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_shareable_report(
        self,
        record_id: str,
        is_public: bool,
        custom_title: str | None = None,
        custom_description: str | None = None,
    ) -> SharedReport:
        previous_slug = self._current_slug(record_id)
        report = self.inner.create_shareable_report(record_id, is_public, custom_title, custom_description)
        self._invalidate_report_caches(report.id, previous_slug, report.slug)
        if report.is_public and report.slug:
            self.cache.set(cache_keys.report_key(report.slug), report.to_dict(), self.ttls.report)
        return report

    def update_privacy(self, record_id: str, is_public: bool, caller_id: str | None = None) -> None:
        self.inner.update_privacy(record_id, is_public, caller_id)
        self._invalidate_report_caches(record_id, self._current_slug(record_id))

    def delete_shareable_report(self, record_id: str, caller_id: str | None = None) -> None:
        previous_slug = self._current_slug(record_id)
        self.inner.delete_shareable_report(record_id, caller_id)
        self._invalidate_report_caches(record_id, previous_slug)

    def regenerate_slug(self, record_id: str, caller_id: str | None = None) -> str:
        previous_slug = self._current_slug(record_id)
        new_slug = self.inner.regenerate_slug(record_id, caller_id)
        self._invalidate_report_caches(record_id, previous_slug, new_slug)
        return new_slug

    def update_og_image(self, record_id: str, og_image_url: str, caller_id: str | None = None) -> None:
        self.inner.update_og_image(record_id, og_image_url, caller_id)
        self._invalidate_report_caches(record_id, self._current_slug(record_id))

    def track_share_event(self, data: Mapping) -> bool:
        if self.analytics is None:
            return False
        recorded = self.analytics.track_share_event(data)
        report_id = data.get("report_id")
        self.cache.delete(cache_keys.share_analytics_key(report_id))
        if recorded and data.get("success"):
            self.cache.delete_pattern(cache_keys.REPORT_STATS_PATTERN)
        return recorded

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def warm_up_cache(self, slugs: Iterable[str]) -> int:
        """Prefetch public reports; returns how many were cached."""
        entries = []
        for slug in slugs:
            try:
                report = self.inner.get_public_report_by_slug(slug)
            except Exception:
                logger.warning("Warm-up lookup failed for slug %s", slug, exc_info=True)
                continue
            if report is not None:
                entries.append(
                    {"key": cache_keys.report_key(slug), "value": report.to_dict(), "ttl": self.ttls.report}
                )
        if entries:
            self.cache.mset(entries)
        return len(entries)

    def preload_recent_reports(self) -> int:
        reports = self.inner.get_recent_reports(PRELOAD_RECENT_LIMIT)
        self._store_recent(reports, PRELOAD_RECENT_LIMIT)
        return len(reports)

    def clear_all_caches(self) -> int:
        return self.cache.clear()

    def get_cache_stats(self) -> dict:
        return self.cache.get_stats()

    def health_check(self) -> dict:
        return {"service": "healthy", "cache": self.cache.health_check()}
