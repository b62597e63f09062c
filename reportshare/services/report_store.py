"""SQLAlchemy persistence for reports and their analytics rows.

Synopsis:
Every query the sharing and analytics services run goes through ``ReportStore``.
Released slugs are kept in ``retired_slug`` so no other report can take them.
Unique-constraint violations on ``report.slug`` become ``ConflictRetryable``;
the session is rolled back on every translated failure.

Glossary:
- Shareable: A report with a slug assigned.
- Owner scope: Optional ``owner_id`` filter applied by joining through ``report``.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import and_, case, exists, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictRetryable
from ..extensions import db
from ..models import Report, ReportView, RetiredSlug, ShareEvent

logger = logging.getLogger(__name__)


SLUG_CONSTRAINT_NAMES = ("ix_report_slug", "report_slug_key")


def _is_slug_conflict(exc: IntegrityError) -> bool:
    """True only for a unique violation on ``report.slug``."""
    orig = getattr(exc, "orig", None)
    constraint = getattr(getattr(orig, "diag", None), "constraint_name", None)
    if constraint:
        return constraint in SLUG_CONSTRAINT_NAMES
    message = str(orig if orig is not None else exc).lower()
    # SQLite names the column; PostgreSQL names the index.
    return "report.slug" in message or any(name in message for name in SLUG_CONSTRAINT_NAMES)


def _bucket_day(value) -> date | None:
    # SQLite returns func.date() as text; PostgreSQL returns a date.
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class ReportStore:
    """Thin query layer over the Flask-SQLAlchemy session."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _commit(self, action: str) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            if _is_slug_conflict(exc):
                logger.info("Slug conflict during %s; caller may retry", action)
                raise ConflictRetryable() from exc
            raise
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("Persistence failure during %s", action)
            raise

    def attach_shareable_data(
        self,
        report: Report,
        *,
        slug: str,
        is_public: bool,
        custom_title: str | None = None,
        custom_description: str | None = None,
    ) -> Report:
        report.slug = slug
        report.is_public = bool(is_public)
        if custom_title is not None:
            report.custom_title = custom_title
        if custom_description is not None:
            report.custom_description = custom_description
        self._commit("attach_shareable_data")
        return report

    def update_privacy(self, report: Report, is_public: bool) -> Report:
        report.is_public = bool(is_public)
        self._commit("update_privacy")
        return report

    def update_og_image(self, report: Report, og_image_url: str | None) -> Report:
        report.og_image_url = og_image_url
        self._commit("update_og_image")
        return report

    def _retire_slug(self, report: Report) -> None:
        if not report.slug or self.session.get(RetiredSlug, report.slug) is not None:
            return
        self.session.add(RetiredSlug(slug=report.slug, report_id=report.id))

    def update_slug(self, report: Report, slug: str) -> Report:
        if report.slug != slug:
            self._retire_slug(report)
        report.slug = slug
        self._commit("update_slug")
        return report

    def clear_sharing_data(self, report: Report) -> Report:
        self._retire_slug(report)
        report.slug = None
        report.is_public = False
        report.og_image_url = None
        report.custom_title = None
        report.custom_description = None
        self._commit("clear_sharing_data")
        return report

    def insert_view(self, **fields) -> ReportView:
        view = ReportView(**fields)
        self.session.add(view)
        self._commit("insert_view")
        return view

    def record_share_event(self, **fields) -> ShareEvent:
        """Insert the event and, when successful, bump ``share_count`` in one commit."""
        event = ShareEvent(**fields)
        self.session.add(event)
        if event.success:
            try:
                self._increment_share_count(event.report_id)
            except SQLAlchemyError:
                self.session.rollback()
                logger.exception("Persistence failure during record_share_event")
                raise
        self._commit("record_share_event")
        return event

    def _increment_share_count(self, report_id: str) -> None:
        self.session.query(Report).filter(Report.id == report_id).update(
            {Report.share_count: func.coalesce(Report.share_count, 0) + 1},
            synchronize_session=False,
        )

    def delete_views_before(self, cutoff: datetime) -> int:
        deleted = (
            self.session.query(ReportView)
            .filter(ReportView.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self._commit("delete_views_before")
        return int(deleted or 0)

    def delete_share_events_before(self, cutoff: datetime) -> int:
        deleted = (
            self.session.query(ShareEvent)
            .filter(ShareEvent.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        self._commit("delete_share_events_before")
        return int(deleted or 0)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, report_id: str) -> Report | None:
        return self.session.get(Report, report_id)

    def get_owned(self, report_id: str, owner_id: str) -> Report | None:
        return (
            self.session.query(Report)
            .filter(Report.id == report_id, Report.owner_id == owner_id)
            .first()
        )

    def find_by_slug(self, slug: str) -> Report | None:
        return self.session.query(Report).filter(Report.slug == slug).first()

    def find_public_by_slug(self, slug: str) -> Report | None:
        return (
            self.session.query(Report)
            .filter(Report.slug == slug, Report.is_public.is_(True))
            .first()
        )

    def find_by_owner(self, owner_id: str, limit: int = 20) -> list[Report]:
        return (
            self.session.query(Report)
            .filter(Report.owner_id == owner_id, Report.slug.isnot(None))
            .order_by(Report.created_at.desc())
            .limit(limit)
            .all()
        )

    def slug_exists(self, slug: str, exclude_id: str | None = None) -> bool:
        """Live and retired slugs both count as taken, except those of ``exclude_id``."""
        live = self.session.query(Report.id).filter(Report.slug == slug)
        retired = self.session.query(RetiredSlug.slug).filter(RetiredSlug.slug == slug)
        if exclude_id:
            live = live.filter(Report.id != exclude_id)
            retired = retired.filter(RetiredSlug.report_id != exclude_id)
        return bool(self.session.query(live.exists()).scalar() or self.session.query(retired.exists()).scalar())

    def recent_public_reports(self, limit: int = 10) -> list[Report]:
        return (
            self.session.query(Report)
            .filter(Report.is_public.is_(True), Report.slug.isnot(None))
            .order_by(Report.created_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    @staticmethod
    def _owned_views(query, owner_id: str | None):
        if owner_id:
            query = query.join(Report, Report.id == ReportView.report_id).filter(Report.owner_id == owner_id)
        return query

    @staticmethod
    def _owned_shares(query, owner_id: str | None):
        if owner_id:
            query = query.join(Report, Report.id == ShareEvent.report_id).filter(Report.owner_id == owner_id)
        return query

    def count_views(
        self,
        *,
        report_id: str | None = None,
        owner_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> int:
        query = self._owned_views(self.session.query(func.count(ReportView.id)), owner_id)
        if report_id:
            query = query.filter(ReportView.report_id == report_id)
        if since is not None:
            query = query.filter(ReportView.created_at >= since)
        if until is not None:
            query = query.filter(ReportView.created_at < until)
        return int(query.scalar() or 0)

    def count_share_events(
        self,
        *,
        report_id: str | None = None,
        owner_id: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        successful_only: bool = True,
    ) -> int:
        query = self._owned_shares(self.session.query(func.count(ShareEvent.id)), owner_id)
        if report_id:
            query = query.filter(ShareEvent.report_id == report_id)
        if successful_only:
            query = query.filter(ShareEvent.success.is_(True))
        if since is not None:
            query = query.filter(ShareEvent.created_at >= since)
        if until is not None:
            query = query.filter(ShareEvent.created_at < until)
        return int(query.scalar() or 0)

    def count_distinct_viewers(self, report_id: str) -> int:
        return int(
            self.session.query(func.count(func.distinct(ReportView.viewer_ip)))
            .filter(ReportView.report_id == report_id, ReportView.viewer_ip.isnot(None))
            .scalar()
            or 0
        )

    def top_view_values(self, report_id: str, column_name: str, limit: int = 10) -> list[tuple[str, int]]:
        """Group a report's views by ``referrer`` or ``country``, most frequent first.

        Missing values form their own group (``None``).
        """
        column = {"referrer": ReportView.referrer, "country": ReportView.country}[column_name]
        total = func.count(ReportView.id)
        rows = (
            self.session.query(column, total)
            .filter(ReportView.report_id == report_id)
            .group_by(column)
            .order_by(total.desc(), column.asc())
            .limit(limit)
            .all()
        )
        return [(value, int(count)) for value, count in rows]

    def share_method_breakdown(
        self,
        *,
        report_id: str | None = None,
        owner_id: str | None = None,
        since: datetime | None = None,
    ) -> list[tuple[str, int, int]]:
        """``(method, total, successful)`` per share method."""
        successful = func.sum(case((ShareEvent.success.is_(True), 1), else_=0))
        query = self._owned_shares(
            self.session.query(ShareEvent.share_method, func.count(ShareEvent.id), successful),
            owner_id,
        )
        if report_id:
            query = query.filter(ShareEvent.report_id == report_id)
        if since is not None:
            query = query.filter(ShareEvent.created_at >= since)
        rows = query.group_by(ShareEvent.share_method).order_by(ShareEvent.share_method.asc()).all()
        return [(method, int(total or 0), int(ok or 0)) for method, total, ok in rows]

    def count_reports(
        self,
        *,
        owner_id: str | None = None,
        public_only: bool = False,
        since: datetime | None = None,
        with_views: bool = False,
        with_successful_shares: bool = False,
    ) -> int:
        query = self.session.query(func.count(Report.id)).filter(Report.slug.isnot(None))
        if owner_id:
            query = query.filter(Report.owner_id == owner_id)
        if public_only:
            query = query.filter(Report.is_public.is_(True))
        if since is not None:
            query = query.filter(Report.created_at >= since)
        if with_views:
            query = query.filter(exists().where(ReportView.report_id == Report.id))
        if with_successful_shares:
            query = query.filter(
                exists().where(and_(ShareEvent.report_id == Report.id, ShareEvent.success.is_(True)))
            )
        return int(query.scalar() or 0)

    def average_security_score(self, owner_id: str | None = None) -> float:
        query = self.session.query(func.avg(Report.security_score)).filter(Report.security_score.isnot(None))
        if owner_id:
            query = query.filter(Report.owner_id == owner_id)
        value = query.scalar()
        return float(value) if value is not None else 0.0

    def daily_view_counts(self, since: datetime, owner_id: str | None = None) -> dict[date, int]:
        day = func.date(ReportView.created_at)
        query = self._owned_views(self.session.query(day, func.count(ReportView.id)), owner_id)
        rows = query.filter(ReportView.created_at >= since).group_by(day).all()
        return {_bucket_day(d): int(c) for d, c in rows if d is not None}

    def daily_share_counts(self, since: datetime, owner_id: str | None = None) -> dict[date, int]:
        day = func.date(ShareEvent.created_at)
        query = self._owned_shares(self.session.query(day, func.count(ShareEvent.id)), owner_id)
        rows = (
            query.filter(ShareEvent.created_at >= since, ShareEvent.success.is_(True))
            .group_by(day)
            .all()
        )
        return {_bucket_day(d): int(c) for d, c in rows if d is not None}

    def daily_report_counts(self, since: datetime, owner_id: str | None = None) -> dict[date, int]:
        day = func.date(Report.created_at)
        query = self.session.query(day, func.count(Report.id)).filter(
            Report.slug.isnot(None), Report.created_at >= since
        )
        if owner_id:
            query = query.filter(Report.owner_id == owner_id)
        rows = query.group_by(day).all()
        return {_bucket_day(d): int(c) for d, c in rows if d is not None}

    def view_timestamps(self, report_id: str, since: datetime) -> list[datetime]:
        rows = (
            self.session.query(ReportView.created_at)
            .filter(ReportView.report_id == report_id, ReportView.created_at >= since)
            .all()
        )
        return [row[0] for row in rows]

    def top_public_reports(self, owner_id: str | None = None, limit: int = 10) -> list[tuple[Report, int]]:
        """Public shareable reports ordered by share count, then total views."""
        view_count = (
            self.session.query(func.count(ReportView.id))
            .filter(ReportView.report_id == Report.id)
            .correlate(Report)
            .scalar_subquery()
        )
        query = self.session.query(Report, view_count.label("view_count")).filter(
            Report.slug.isnot(None), Report.is_public.is_(True)
        )
        if owner_id:
            query = query.filter(Report.owner_id == owner_id)
        rows = (
            query.order_by(Report.share_count.desc(), view_count.desc(), Report.created_at.desc())
            .limit(limit)
            .all()
        )
        return [(report, int(views or 0)) for report, views in rows]

    def trending_candidates(self, since: datetime, limit: int = 10) -> list[tuple[Report, int, int]]:
        """Recent public reports with windowed view and successful-share counts."""
        recent_views = (
            self.session.query(func.count(ReportView.id))
            .filter(ReportView.report_id == Report.id, ReportView.created_at >= since)
            .correlate(Report)
            .scalar_subquery()
        )
        recent_shares = (
            self.session.query(func.count(ShareEvent.id))
            .filter(
                ShareEvent.report_id == Report.id,
                ShareEvent.success.is_(True),
                ShareEvent.created_at >= since,
            )
            .correlate(Report)
            .scalar_subquery()
        )
        rows = (
            self.session.query(Report, recent_views.label("recent_views"), recent_shares.label("recent_shares"))
            .filter(Report.is_public.is_(True), Report.slug.isnot(None), Report.created_at >= since)
            .order_by(Report.share_count.desc(), recent_views.desc())
            .limit(limit)
            .all()
        )
        return [(report, int(views or 0), int(shares or 0)) for report, views, shares in rows]
