from datetime import timedelta

import pytest

from reportshare.extensions import db
from reportshare.models import ReportView
from reportshare.services.integrated_service import IntegratedService, IntegrationOptions
from reportshare.utils.datetime_helpers import utc_now


@pytest.fixture
def integrated(services):
    return services.integrated


@pytest.fixture
def shared_report(services, make_report):
    def _shared(url="https://example.com/articles/my-post", *, public=True, owner_id="u1", **kwargs):
        record_id = make_report(url, owner_id=owner_id, **kwargs)
        return services.reports.create_shareable_report(record_id, public)

    return _shared


TRACKING = {
    "viewer_ip": "203.0.113.42",
    "user_agent": "pytest",
    "referrer": "https://news.example",
    "country": "NL",
}


def test_public_read_records_a_view(integrated, shared_report):
    report = shared_report()

    fetched = integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING)

    assert fetched.id == report.id
    view = ReportView.query.one()
    assert view.viewer_ip == "203.0.113.0"
    assert view.country == "NL"


def test_denied_read_records_nothing(integrated, shared_report):
    report = shared_report(public=False, owner_id="u1")

    assert integrated.get_report_by_slug_with_tracking(report.slug, "u2", TRACKING) is None
    assert ReportView.query.count() == 0

    assert integrated.get_report_by_slug_with_tracking(report.slug, "u1", TRACKING).id == report.id
    assert ReportView.query.count() == 1


def test_do_not_track_read_still_returns_report(integrated, shared_report):
    report = shared_report()
    fetched = integrated.get_report_by_slug_with_tracking(report.slug, None, dict(TRACKING, do_not_track=True))
    assert fetched.id == report.id
    assert ReportView.query.count() == 0


def test_analytics_failure_never_affects_the_read(integrated, shared_report, monkeypatch):
    report = shared_report()

    def broken(**fields):
        raise RuntimeError("analytics store down")

    monkeypatch.setattr(integrated.analytics.store, "insert_view", broken)
    assert integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING).id == report.id


def test_feature_switches_disable_tracking(services, shared_report):
    report = shared_report()
    integrated = IntegratedService(
        services.reports,
        services.analytics,
        services.store,
        IntegrationOptions(enable_view_tracking=False, enable_share_tracking=False, enable_engagement_metrics=False),
    )

    integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING)
    assert ReportView.query.count() == 0
    assert integrated.track_share_event({"report_id": report.id, "share_method": "copy", "success": True}) is False
    assert integrated.get_report_analytics(report.id)["engagement"] is None


def test_report_analytics_combines_sharing_engagement_and_realtime(integrated, shared_report):
    report = shared_report()
    integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING)
    integrated.track_share_event({"report_id": report.id, "share_method": "native", "success": True})

    analytics = integrated.get_report_analytics(report.id, caller_id="u1")

    assert analytics["sharing"]["total_shares"] == 1
    assert analytics["engagement"]["total_views"] == 1
    assert analytics["realtime"]["last_24_hours"] == {"views": 1, "shares": 1}


def test_enhanced_dashboard(integrated, shared_report):
    shared_report()
    data = integrated.get_enhanced_dashboard_data("u1", days=7)
    assert data["report_stats"]["total_reports"] == 1
    assert data["analytics"]["overview"]["total_reports"] == 1
    assert data["viral_coefficient"] == 0
    assert [step["count"] for step in data["conversion_funnel"]["steps"]] == [1, 0, 0]
    assert "timestamp" in data


def test_trending_weights_shares_three_times_views(integrated, shared_report):
    viewed = shared_report("https://viewed.example.com")
    shared = shared_report("https://shared.example.com")
    private = shared_report("https://private.example.com", public=False)

    for _ in range(5):
        integrated.get_public_report_by_slug_with_tracking(viewed.slug, TRACKING)
    integrated.get_public_report_by_slug_with_tracking(shared.slug, TRACKING)
    for _ in range(2):
        integrated.track_share_event({"report_id": shared.id, "share_method": "social", "success": True})
    integrated.track_share_event({"report_id": viewed.id, "share_method": "social", "success": False})

    trending = integrated.get_trending_reports(limit=10, days=7)

    assert [item["slug"] for item in trending] == [shared.slug, viewed.slug]
    assert trending[0]["trend_score"] == 1 + 3 * 2
    assert trending[1]["trend_score"] == 5
    assert private.slug not in {item["slug"] for item in trending}


def test_trending_ignores_views_outside_window(integrated, shared_report):
    report = shared_report()
    db.session.add(ReportView(report_id=report.id, created_at=utc_now() - timedelta(days=10)))
    db.session.commit()

    trending = integrated.get_trending_reports(days=7)
    assert trending[0]["recent_views"] == 0


def test_performance_insights_flag_low_sharing(integrated, shared_report):
    report = shared_report(security_score=64)
    for _ in range(10):
        integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING)

    insights = integrated.get_performance_insights("u1")

    titles = [insight["title"] for insight in insights["insights"]]
    assert titles == ["Low Viral Coefficient", "Low Share Conversion Rate", "Top Performing Reports"]
    assert "averaging 64" in insights["insights"][-1]["description"]
    assert len(insights["recommendations"]) == 3
    assert insights["metrics"]["average_views_per_report"] == 10


def test_performance_insights_celebrate_high_virality(integrated, shared_report):
    report = shared_report()
    integrated.get_public_report_by_slug_with_tracking(report.slug, TRACKING)
    integrated.track_share_event({"report_id": report.id, "share_method": "copy", "success": True})

    insights = integrated.get_performance_insights("u1")

    assert insights["insights"][0]["type"] == "success"
    assert insights["metrics"]["viral_coefficient"] == 1
    assert "Low Share Conversion Rate" not in [i["title"] for i in insights["insights"]]


def test_cleanup_and_health(integrated, shared_report):
    report = shared_report()
    db.session.add(ReportView(report_id=report.id, created_at=utc_now() - timedelta(days=400)))
    db.session.commit()

    assert integrated.cleanup_analytics_data()["deleted_views"] == 1

    health = integrated.get_analytics_health()
    assert health["service"] == "healthy"
    assert health["cache"]["status"] == "healthy"
    assert health["analytics"]["status"] == "healthy"
