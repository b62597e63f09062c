"""Report visibility, ownership and slug lifecycle.

Synopsis:
Turns an analysis record into a shareable report, enforces who may read or
mutate it, and announces newly public reports on the realtime channel.

Glossary:
- Ownership check: Performed only when a caller id is supplied; a mismatch (or
  a missing record) raises ``AccessDenied``.
- Soft delete: Clears the slug and forces the report private; the row stays.
"""

from __future__ import annotations

import logging
from typing import Iterable

from ..errors import AccessDenied, ConflictRetryable, NotFound
from ..utils.report_display import format_recent_report_for_display, score_indicator
from .interfaces import RecentReport, ReportAccess, SharedReport
from .realtime_notifier import NEW_RECENT_REPORT, UPDATED_RECENT_REPORT
from .report_store import ReportStore
from .slug_generator import SlugGenerator, SlugOptions, validate_slug_format

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000"
DEFAULT_BRAND_NAME = "LinkShield"
DEFAULT_HASHTAGS = ("LinkSecurity", "URLAnalysis", "WebSafety")


class ReportAccessService(ReportAccess):
    """Source-of-truth implementation backed by ``ReportStore``."""

    def __init__(
        self,
        store: ReportStore,
        notifier=None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        brand_name: str = DEFAULT_BRAND_NAME,
        hashtags: Iterable[str] = DEFAULT_HASHTAGS,
        slug_options: SlugOptions | None = None,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.brand_name = brand_name or DEFAULT_BRAND_NAME
        self.hashtags = list(hashtags or DEFAULT_HASHTAGS)
        self.slugs = SlugGenerator(store.slug_exists, slug_options)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require(self, record_id: str):
        report = self.store.get(record_id)
        if report is None:
            raise NotFound(f"Report with ID {record_id} not found")
        return report

    def _require_mutable(self, record_id: str, caller_id: str | None):
        if caller_id:
            report = self.store.get_owned(record_id, caller_id)
            if report is None:
                raise AccessDenied()
            return report
        return self._require(record_id)

    def _emit(self, event_name: str, report: SharedReport) -> None:
        if self.notifier is None or not report.slug:
            return
        try:
            payload = format_recent_report_for_display(RecentReport.from_shared(report).to_dict())
            self.notifier.emit(event_name, payload)
        except Exception:
            logger.warning("Failed to emit %s for report %s", event_name, report.id, exc_info=True)

    # ------------------------------------------------------------------
    # Slug lifecycle
    # ------------------------------------------------------------------

    def create_shareable_report(
        self,
        record_id: str,
        is_public: bool,
        custom_title: str | None = None,
        custom_description: str | None = None,
    ) -> SharedReport:
        report = self._require(record_id)
        try:
            self._attach(report, is_public, custom_title, custom_description)
        except ConflictRetryable:
            logger.info("Slug race on report %s; regenerating once", record_id)
            report = self._require(record_id)
            self._attach(report, is_public, custom_title, custom_description)

        shared = SharedReport.from_model(report)
        if shared.is_public:
            self._emit(NEW_RECENT_REPORT, shared)
        return shared

    def _attach(self, report, is_public, custom_title, custom_description) -> None:
        slug = self.slugs.generate(report.url, report.id)
        self.store.attach_shareable_data(
            report,
            slug=slug,
            is_public=is_public,
            custom_title=custom_title,
            custom_description=custom_description,
        )

    def regenerate_slug(self, record_id: str, caller_id: str | None = None) -> str:
        report = self._require_mutable(record_id, caller_id)
        try:
            slug = self.slugs.generate(report.url, report.id)
            self.store.update_slug(report, slug)
        except ConflictRetryable:
            report = self._require(record_id)
            slug = self.slugs.generate(report.url, report.id)
            self.store.update_slug(report, slug)
        return slug

    def validate_slug(self, slug: str, exclude_id: str | None = None) -> bool:
        if not validate_slug_format(slug):
            return False
        return not self.store.slug_exists(slug, exclude_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_report(self, record_id: str) -> SharedReport | None:
        """Unchecked lookup by id for internal collaborators."""
        report = self.store.get(record_id)
        return SharedReport.from_model(report) if report else None

    def get_report_by_slug(self, slug: str, caller_id: str | None = None) -> SharedReport | None:
        report = self.store.find_by_slug(slug)
        if report is None:
            return None
        shared = SharedReport.from_model(report)
        # Denied and missing look the same to the caller.
        if not shared.can_be_read_by(caller_id):
            return None
        return shared

    def get_public_report_by_slug(self, slug: str) -> SharedReport | None:
        report = self.store.find_public_by_slug(slug)
        return SharedReport.from_model(report) if report else None

    def get_recent_reports(self, limit: int = 10) -> list[RecentReport]:
        return [
            RecentReport.from_shared(SharedReport.from_model(report))
            for report in self.store.recent_public_reports(limit)
        ]

    def get_user_shareable_reports(self, owner_id: str, limit: int = 20) -> list[SharedReport]:
        return [SharedReport.from_model(report) for report in self.store.find_by_owner(owner_id, limit)]

    def get_share_analytics(self, record_id: str, caller_id: str | None = None) -> dict:
        if caller_id:
            self._require_mutable(record_id, caller_id)
        shares_by_method = {
            method: {"total": total, "successful": successful}
            for method, total, successful in self.store.share_method_breakdown(report_id=record_id)
        }
        return {
            "total_shares": self.store.count_share_events(report_id=record_id),
            "shares_by_method": shares_by_method,
        }

    def get_report_statistics(self, owner_id: str | None = None) -> dict:
        total_reports = self.store.count_reports(owner_id=owner_id)
        public_reports = self.store.count_reports(owner_id=owner_id, public_only=True)
        total_shares = self.store.count_share_events(owner_id=owner_id)
        return {
            "total_reports": total_reports,
            "public_reports": public_reports,
            "private_reports": total_reports - public_reports,
            "total_views": self.store.count_views(owner_id=owner_id),
            "total_shares": total_shares,
            "average_shares_per_report": total_shares / total_reports if total_reports else 0,
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_privacy(self, record_id: str, is_public: bool, caller_id: str | None = None) -> None:
        report = self._require_mutable(record_id, caller_id)
        self.store.update_privacy(report, is_public)
        if is_public:
            self._emit(UPDATED_RECENT_REPORT, SharedReport.from_model(report))

    def delete_shareable_report(self, record_id: str, caller_id: str | None = None) -> None:
        report = self._require_mutable(record_id, caller_id)
        self.store.clear_sharing_data(report)

    def update_og_image(self, record_id: str, og_image_url: str, caller_id: str | None = None) -> None:
        report = self._require_mutable(record_id, caller_id)
        self.store.update_og_image(report, og_image_url)

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def generate_share_data(self, report: SharedReport) -> dict:
        domain = report.domain
        score = report.security_score if report.security_score is not None else "N/A"
        title = report.custom_title or (
            f"{domain} Security Report {score_indicator(report.security_score)} - Score: {score}/100"
        )
        text = report.custom_description or (
            f"I analyzed {domain} with {self.brand_name} and got a security score of "
            f"{score}/100. Check out the full report!"
        )
        return {
            "url": f"{self.base_url}/reports/{report.slug}",
            "title": title,
            "text": text,
            "hashtags": list(self.hashtags),
            "via": self.brand_name,
        }

    def format_report_for_public_display(self, report: SharedReport) -> dict:
        data = report.to_dict()
        data.pop("owner_id", None)
        return data
