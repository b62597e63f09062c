"""Narrow contracts between the sharing components.

Synopsis:
The cached and integrated services wrap instances of these interfaces instead of
subclassing concrete services. ``SharedReport`` is the immutable snapshot every
layer passes around and the shape stored in the cache.

Glossary:
- Snapshot: Plain values copied off a ``Report`` row; safe to cache and to use
  after the session closes.
- Caller id: Identity of the requester; ``None`` means anonymous.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from ..utils.report_display import display_domain


@dataclass(frozen=True)
class SharedReport:
    id: str
    url: str
    security_score: int | None
    slug: str | None
    is_public: bool
    owner_id: str | None
    created_at: datetime
    custom_title: str | None = None
    custom_description: str | None = None
    og_image_url: str | None = None
    share_count: int = 0
    has_ai_analysis: bool = False

    @classmethod
    def from_model(cls, report) -> "SharedReport":
        return cls.from_dict(report.to_dict())

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SharedReport":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict:
        return asdict(self)

    def with_changes(self, **changes) -> "SharedReport":
        return replace(self, **changes)

    @property
    def domain(self) -> str:
        return display_domain(self.url)

    def can_be_read_by(self, caller_id: str | None) -> bool:
        """Public reports are open; private ones only to their owner."""
        if self.is_public:
            return True
        if not caller_id:
            return False
        return self.owner_id == caller_id


@dataclass(frozen=True)
class RecentReport:
    id: str
    slug: str
    url: str
    domain: str
    security_score: int | None
    created_at: datetime
    has_ai_analysis: bool = False

    @classmethod
    def from_shared(cls, report: SharedReport) -> "RecentReport":
        return cls(
            id=report.id,
            slug=report.slug or "",
            url=report.url,
            domain=report.domain,
            security_score=report.security_score,
            created_at=report.created_at,
            has_ai_analysis=report.has_ai_analysis,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RecentReport":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict:
        return asdict(self)


class ReportAccess(ABC):
    """Visibility, ownership and slug lifecycle for shareable reports."""

    @abstractmethod
    def create_shareable_report(
        self,
        record_id: str,
        is_public: bool,
        custom_title: str | None = None,
        custom_description: str | None = None,
    ) -> SharedReport: ...

    @abstractmethod
    def get_report(self, record_id: str) -> SharedReport | None: ...

    @abstractmethod
    def get_report_by_slug(self, slug: str, caller_id: str | None = None) -> SharedReport | None: ...

    @abstractmethod
    def get_public_report_by_slug(self, slug: str) -> SharedReport | None: ...

    @abstractmethod
    def update_privacy(self, record_id: str, is_public: bool, caller_id: str | None = None) -> None: ...

    @abstractmethod
    def delete_shareable_report(self, record_id: str, caller_id: str | None = None) -> None: ...

    @abstractmethod
    def regenerate_slug(self, record_id: str, caller_id: str | None = None) -> str: ...

    @abstractmethod
    def validate_slug(self, slug: str, exclude_id: str | None = None) -> bool: ...

    @abstractmethod
    def update_og_image(self, record_id: str, og_image_url: str, caller_id: str | None = None) -> None: ...

    @abstractmethod
    def get_recent_reports(self, limit: int = 10) -> list[RecentReport]: ...

    @abstractmethod
    def get_share_analytics(self, record_id: str, caller_id: str | None = None) -> dict: ...

    @abstractmethod
    def get_user_shareable_reports(self, owner_id: str, limit: int = 20) -> list[SharedReport]: ...

    @abstractmethod
    def get_report_statistics(self, owner_id: str | None = None) -> dict: ...

    @abstractmethod
    def generate_share_data(self, report: SharedReport) -> dict: ...

    @abstractmethod
    def format_report_for_public_display(self, report: SharedReport) -> dict: ...


class ReportCache(ABC):
    """Best-effort key/value store. Implementations never raise to callers."""

    @abstractmethod
    def get(self, key: str): ...

    @abstractmethod
    def set(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int: ...

    @abstractmethod
    def mset(self, entries: Iterable[Mapping[str, Any]]) -> bool: ...

    @abstractmethod
    def clear(self) -> int: ...

    @abstractmethod
    def get_stats(self) -> dict: ...

    @abstractmethod
    def health_check(self) -> dict: ...


class ReportAnalytics(ABC):
    """Privacy-filtered event recording plus aggregate metrics."""

    @abstractmethod
    def track_view(self, data: Mapping[str, Any], do_not_track: bool = False) -> bool: ...

    @abstractmethod
    def track_share_event(self, data: Mapping[str, Any]) -> bool: ...

    @abstractmethod
    def get_engagement_metrics(self, report_id: str) -> dict: ...

    @abstractmethod
    def get_dashboard_data(self, owner_id: str | None = None, days: int = 30) -> dict: ...

    @abstractmethod
    def get_conversion_funnel(self, owner_id: str | None = None, days: int = 30) -> dict: ...

    @abstractmethod
    def get_viral_coefficient(self, owner_id: str | None = None, days: int = 30) -> float: ...

    @abstractmethod
    def get_realtime_analytics(self, report_id: str) -> dict: ...

    @abstractmethod
    def cleanup_old_data(self) -> dict: ...
