from ..extensions import db
from .analytics import ReportView, ShareEvent
from .feature_flag import FeatureFlag
from .report import Report, RetiredSlug, generate_report_id

__all__ = [
    "db",
    "Report",
    "ShareEvent",
    "ReportView",
    "RetiredSlug",
    "FeatureFlag",
    "generate_report_id",
]
