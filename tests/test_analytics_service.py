from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from reportshare.extensions import db
from reportshare.models import ReportView, ShareEvent
from reportshare.services import cache_keys
from reportshare.services.analytics_service import (
    AnalyticsService,
    ShareMethod,
    normalize_share_method,
    ratio,
)
from reportshare.errors import ValidationError
from reportshare.utils.datetime_helpers import utc_now


@pytest.fixture
def analytics(services):
    return services.analytics


@pytest.fixture
def shared_report(services, make_report):
    def _shared(url="https://example.com/articles/my-post", *, public=True, owner_id="u1", **kwargs):
        record_id = make_report(url, owner_id=owner_id, **kwargs)
        services.reports.create_shareable_report(record_id, public)
        return record_id

    return _shared


def _views(analytics, report_id, count, **fields):
    for index in range(count):
        data = {"report_id": report_id, "viewer_ip": f"198.51.{index % 4}.{index}"}
        data.update(fields)
        assert analytics.track_view(data)


def _shares(analytics, report_id, count, method="copy", success=True):
    for _ in range(count):
        assert analytics.track_share_event(
            {"report_id": report_id, "share_method": method, "success": success}
        )


def test_hundred_views_and_five_shares(analytics, shared_report):
    r3 = shared_report()
    _views(analytics, r3, 100)
    _shares(analytics, r3, 5)

    metrics = analytics.get_engagement_metrics(r3)
    assert metrics["total_views"] == 100
    assert metrics["total_shares"] == 5
    assert metrics["conversion_rate"] == pytest.approx(5.0)
    assert metrics["shares_by_method"] == {"copy": 5}

    assert analytics.get_dashboard_data()["viral_coefficient"] == pytest.approx(0.05)
    assert analytics.get_viral_coefficient() == pytest.approx(0.05)


def test_viral_coefficient_is_zero_without_views(analytics, shared_report):
    report_id = shared_report()
    _shares(analytics, report_id, 3)
    assert analytics.get_viral_coefficient() == 0
    assert analytics.get_engagement_metrics(report_id)["conversion_rate"] == 0


def test_do_not_track_is_honoured(analytics, shared_report, services):
    report_id = shared_report()
    assert analytics.track_view({"report_id": report_id}, do_not_track=True) is False
    assert ReportView.query.count() == 0

    permissive = AnalyticsService(services.store, services.cache, respect_do_not_track=False)
    assert permissive.track_view({"report_id": report_id}, do_not_track=True) is True
    assert ReportView.query.count() == 1


def test_ips_are_anonymized_before_storage(analytics, shared_report):
    report_id = shared_report()
    analytics.track_view({"report_id": report_id, "viewer_ip": "203.0.113.42"})
    analytics.track_view({"report_id": report_id, "viewer_ip": "2001:db8:85a3:8d3:1319:8a2e:370:7348"})
    analytics.track_share_event(
        {"report_id": report_id, "share_method": "email", "success": True, "ip_address": "203.0.113.200"}
    )

    stored = sorted(view.viewer_ip for view in ReportView.query.all())
    assert stored == ["2001:db8:85a3:8d3::", "203.0.113.0"]
    assert ShareEvent.query.one().ip_address == "203.0.113.0"


def test_unique_views_count_distinct_anonymized_ips(analytics, shared_report):
    report_id = shared_report()
    for ip in ("203.0.113.1", "203.0.113.99", "198.51.100.7"):
        analytics.track_view({"report_id": report_id, "viewer_ip": ip})
    assert analytics.get_engagement_metrics(report_id)["unique_views"] == 2


def test_unknown_share_method_is_rejected(analytics, shared_report):
    report_id = shared_report()
    assert analytics.track_share_event({"report_id": report_id, "share_method": "carrier-pigeon"}) is False
    assert ShareEvent.query.count() == 0
    with pytest.raises(ValidationError):
        normalize_share_method(None)
    assert normalize_share_method(" LinkedIn ") is ShareMethod.LINKEDIN


def test_failed_share_does_not_bump_share_count(analytics, shared_report, services):
    report_id = shared_report()
    _shares(analytics, report_id, 2, success=False)
    _shares(analytics, report_id, 1, success=True)
    assert services.report_access.get_report(report_id).share_count == 1
    assert ShareEvent.query.count() == 3


def test_tracking_failures_are_contained(analytics, shared_report, monkeypatch):
    report_id = shared_report()

    def broken(**fields):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(analytics.store, "insert_view", broken)
    monkeypatch.setattr(analytics.store, "record_share_event", broken)

    assert analytics.track_view({"report_id": report_id}) is False
    assert analytics.track_share_event({"report_id": report_id, "share_method": "copy", "success": True}) is False


def test_share_count_failure_leaves_no_orphan_event(analytics, shared_report, services, monkeypatch):
    report_id = shared_report()

    def broken_increment(report_id):
        raise OperationalError("UPDATE report", {}, Exception("database is locked"))

    monkeypatch.setattr(analytics.store, "_increment_share_count", broken_increment)

    assert analytics.track_share_event({"report_id": report_id, "share_method": "copy", "success": True}) is False
    assert ShareEvent.query.count() == 0
    assert services.report_access.get_report(report_id).share_count == 0


def test_engagement_is_cached_and_invalidated_by_new_views(analytics, shared_report, services):
    report_id = shared_report()
    _views(analytics, report_id, 2, referrer="https://news.example", country="DE")
    analytics.track_view({"report_id": report_id})

    metrics = analytics.get_engagement_metrics(report_id)
    assert services.cache.get(cache_keys.engagement_key(report_id)) == metrics
    assert metrics["top_referrers"] == [
        {"referrer": "https://news.example", "count": 2},
        {"referrer": "Direct", "count": 1},
    ]
    assert metrics["geographic_distribution"][0] == {"country": "DE", "count": 2}
    assert {"country": "Unknown", "count": 1} in metrics["geographic_distribution"]

    analytics.track_view({"report_id": report_id})
    assert services.cache.get(cache_keys.engagement_key(report_id)) is None
    assert analytics.get_engagement_metrics(report_id)["total_views"] == 4


def test_dashboard_trends_are_zero_filled(analytics, shared_report):
    report_id = shared_report(security_score=71)
    shared_report("https://second.example.com", security_score=90)
    _views(analytics, report_id, 3)
    _shares(analytics, report_id, 1)

    dashboard = analytics.get_dashboard_data(days=7)

    views = dashboard["trends"]["views_over_time"]
    assert len(views) == 8
    assert sum(day["views"] for day in views) == 3
    assert views[-1]["date"] == utc_now().date().isoformat()
    assert [day["views"] for day in views[:-1]] == [0] * 7
    assert sum(day["reports"] for day in dashboard["trends"]["reports_over_time"]) == 2
    assert sum(day["shares"] for day in dashboard["trends"]["shares_over_time"]) == 1

    overview = dashboard["overview"]
    assert overview == {
        "total_reports": 2,
        "total_views": 3,
        "total_shares": 1,
        "average_security_score": 80.5,
    }
    assert dashboard["top_reports"][0]["slug"].startswith("example-com-articles-my-post")
    assert dashboard["top_reports"][0]["views"] == 3


def test_sharing_method_success_rates(analytics, shared_report):
    report_id = shared_report()
    _shares(analytics, report_id, 3, method="twitter")
    _shares(analytics, report_id, 1, method="twitter", success=False)
    _shares(analytics, report_id, 2, method="qr")

    methods = {row["method"]: row for row in analytics.get_dashboard_data()["sharing_methods"]}
    assert methods["twitter"]["count"] == 4
    assert methods["twitter"]["success_rate"] == pytest.approx(75.0)
    assert methods["qr"]["success_rate"] == pytest.approx(100.0)


def test_dashboard_is_scoped_to_owner(analytics, shared_report):
    mine = shared_report(owner_id="u1")
    theirs = shared_report("https://theirs.example.com", owner_id="u2")
    _views(analytics, mine, 2)
    _views(analytics, theirs, 5)

    assert analytics.get_dashboard_data("u1")["overview"]["total_views"] == 2
    assert analytics.get_dashboard_data("u2")["overview"]["total_views"] == 5
    assert analytics.get_dashboard_data()["overview"]["total_views"] == 7


def test_conversion_funnel_is_non_increasing(analytics, shared_report):
    viewed_and_shared = shared_report("https://a.example.com")
    viewed_only = shared_report("https://b.example.com")
    shared_without_views = shared_report("https://c.example.com")
    shared_report("https://d.example.com")

    _views(analytics, viewed_and_shared, 4)
    _views(analytics, viewed_only, 1)
    _shares(analytics, viewed_and_shared, 1)
    _shares(analytics, shared_without_views, 2)

    funnel = analytics.get_conversion_funnel()
    counts = [step["count"] for step in funnel["steps"]]
    assert counts == [4, 2, 1]
    assert counts == sorted(counts, reverse=True)
    assert [step["percentage"] for step in funnel["steps"]] == [100, 50.0, 25.0]
    assert funnel["metrics"]["views_per_report"] == pytest.approx(5 / 4)
    assert funnel["metrics"]["shares_per_report"] == pytest.approx(3 / 4)
    assert funnel["metrics"]["share_conversion_rate"] == pytest.approx(60.0)


def test_empty_funnel(analytics):
    funnel = analytics.get_conversion_funnel()
    assert [step["count"] for step in funnel["steps"]] == [0, 0, 0]
    assert [step["percentage"] for step in funnel["steps"]] == [0, 0, 0]


def test_realtime_analytics_has_24_hourly_buckets(analytics, shared_report):
    report_id = shared_report()
    _views(analytics, report_id, 3)
    _shares(analytics, report_id, 1)
    old = ReportView(report_id=report_id, created_at=utc_now() - timedelta(hours=30))
    db.session.add(old)
    db.session.commit()

    realtime = analytics.get_realtime_analytics(report_id)
    assert realtime["last_24_hours"] == {"views": 3, "shares": 1}
    assert len(realtime["hourly_breakdown"]) == 24
    assert realtime["hourly_breakdown"][-1]["views"] == 3
    assert sum(bucket["views"] for bucket in realtime["hourly_breakdown"]) == 3


def test_cleanup_removes_only_expired_rows(analytics, shared_report):
    report_id = shared_report()
    expired = utc_now() - timedelta(days=analytics.retention_days + 1)
    db.session.add(ReportView(report_id=report_id, created_at=expired))
    db.session.add(ShareEvent(report_id=report_id, share_method="copy", success=True, created_at=expired))
    db.session.commit()
    _views(analytics, report_id, 2)
    _shares(analytics, report_id, 1)

    result = analytics.cleanup_old_data()
    assert (result["deleted_views"], result["deleted_shares"]) == (1, 1)
    assert ReportView.query.count() == 2
    assert ShareEvent.query.count() == 1

    again = analytics.cleanup_old_data()
    assert (again["deleted_views"], again["deleted_shares"]) == (0, 0)


def test_recent_activity_counts_all_share_attempts(analytics, shared_report):
    report_id = shared_report()
    _views(analytics, report_id, 1)
    _shares(analytics, report_id, 1, success=False)
    assert analytics.get_recent_activity() == {"views": 1, "shares": 1}


@pytest.mark.parametrize(
    "numerator,denominator,expected",
    [(0, 0, 0), (5, 0, 0), (5, 100, 0.05), (0, 10, 0.0)],
)
def test_ratio_guards_zero_denominator(numerator, denominator, expected):
    assert ratio(numerator, denominator) == expected
