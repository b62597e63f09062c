import uuid

from ..extensions import db
from ..utils.datetime_helpers import utc_now
from .mixins import TimestampMixin


def generate_report_id() -> str:
    """Collision-resistant 25 character identifier (cuid-shaped)."""
    return "c" + uuid.uuid4().hex[:24]


class Report(TimestampMixin, db.Model):
    """Analysis record produced upstream, plus its sharing metadata."""

    __tablename__ = "report"
    __table_args__ = (
        db.Index("ix_report_public_created", "is_public", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=generate_report_id)
    url = db.Column(db.Text, nullable=False)
    security_score = db.Column(db.Integer, nullable=True)
    owner_id = db.Column(db.String(64), nullable=True, index=True)
    has_ai_analysis = db.Column(db.Boolean, default=False, nullable=False)

    # Sharing metadata
    slug = db.Column(db.String(100), unique=True, nullable=True, index=True)
    is_public = db.Column(db.Boolean, default=False, nullable=False)
    custom_title = db.Column(db.String(255), nullable=True)
    custom_description = db.Column(db.Text, nullable=True)
    og_image_url = db.Column(db.Text, nullable=True)
    share_count = db.Column(db.Integer, default=0, nullable=False)

    share_events = db.relationship(
        "ShareEvent",
        back_populates="report",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )
    views = db.relationship(
        "ReportView",
        back_populates="report",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "security_score": self.security_score,
            "slug": self.slug,
            "is_public": bool(self.is_public),
            "owner_id": self.owner_id,
            "custom_title": self.custom_title,
            "custom_description": self.custom_description,
            "og_image_url": self.og_image_url,
            "share_count": int(self.share_count or 0),
            "has_ai_analysis": bool(self.has_ai_analysis),
            "created_at": self.created_at,
        }

    def __repr__(self) -> str:
        return f"<Report {self.id} slug={self.slug!r} public={self.is_public}>"


class RetiredSlug(db.Model):
    """Slug released by a delete or regenerate; only its last owner may take it again."""

    __tablename__ = "retired_slug"

    slug = db.Column(db.String(100), primary_key=True)
    report_id = db.Column(db.String(32), nullable=False, index=True)
    retired_at = db.Column(db.DateTime, default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<RetiredSlug {self.slug} report={self.report_id}>"
