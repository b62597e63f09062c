"""Error taxonomy for the report sharing subsystem.

Synopsis:
Typed failures returned to callers of the report access layer. Cache and
analytics failures never leave their components; they are logged and bypassed.

Glossary:
- Code: Stable machine-readable identifier rendered in API payloads.
- Retryable conflict: Persistence unique-constraint race on slug assignment.
"""

from __future__ import annotations


class ReportShareError(Exception):
    """Base class for every failure this package raises on purpose."""

    code = "report_share_error"
    default_message = "Report sharing operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class NotFound(ReportShareError):
    code = "not_found"
    default_message = "Report not found"


class AccessDenied(ReportShareError):
    code = "access_denied"
    default_message = "Report not found or access denied"


class SlugExhausted(ReportShareError):
    code = "slug_exhausted"
    default_message = "Unable to generate unique slug after 100 attempts"


class ValidationError(ReportShareError):
    code = "validation_error"
    default_message = "Invalid input"


class ConflictRetryable(ReportShareError):
    code = "conflict_retryable"
    default_message = "Slug was claimed concurrently; retry generation"


class CacheUnavailable(ReportShareError):
    # Raised inside the cache layer only; CacheService always catches it.
    code = "cache_unavailable"
    default_message = "Cache backend unavailable"
