from ..extensions import db
from ..utils.datetime_helpers import utc_now


class ShareEvent(db.Model):
    """Append-only record of a share attempt."""

    __tablename__ = "share_event"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.String(32), db.ForeignKey("report.id", ondelete="CASCADE"), nullable=False, index=True
    )
    share_method = db.Column(db.String(32), nullable=False, index=True)
    success = db.Column(db.Boolean, nullable=False, default=False)
    user_agent = db.Column(db.Text, nullable=True)
    referrer = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False, index=True)

    report = db.relationship("Report", back_populates="share_events")

    def __repr__(self) -> str:
        return f"<ShareEvent {self.share_method} success={self.success} report={self.report_id}>"


class ReportView(db.Model):
    """Append-only record of a report page view. Never updated."""

    __tablename__ = "report_view"

    id = db.Column(db.Integer, primary_key=True)
    report_id = db.Column(
        db.String(32), db.ForeignKey("report.id", ondelete="CASCADE"), nullable=False, index=True
    )
    viewer_ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.Text, nullable=True)
    referrer = db.Column(db.Text, nullable=True)
    country = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=utc_now, nullable=False, index=True)

    report = db.relationship("Report", back_populates="views")

    def __repr__(self) -> str:
        return f"<ReportView report={self.report_id}>"
