import json
from datetime import timedelta

from reportshare.extensions import db
from reportshare.models import Report, ReportView
from reportshare.services import cache_keys
from reportshare.services.container import get_services
from reportshare.utils.datetime_helpers import utc_now


def _public_report(app, url="https://example.com/cli", report_id="ccli0000000000cli001"):
    with app.app_context():
        db.session.add(Report(id=report_id, url=url, owner_id="u1", security_score=70))
        db.session.commit()
        return get_services(app).reports.create_shareable_report(report_id, True).slug


def test_cleanup_analytics_command(app, runner):
    _public_report(app)
    with app.app_context():
        db.session.add(ReportView(report_id="ccli0000000000cli001", created_at=utc_now() - timedelta(days=365)))
        db.session.commit()

    result = runner.invoke(args=["cleanup-analytics"])

    assert result.exit_code == 0, result.output
    assert "Deleted 1 views and 0 share events" in result.output
    with app.app_context():
        assert ReportView.query.count() == 0


def test_warm_report_cache_requires_input(runner):
    result = runner.invoke(args=["warm-report-cache"])
    assert result.exit_code != 0
    assert "Pass at least one SLUG or --recent" in result.output


def test_warm_report_cache_prefetches_slugs(app, runner):
    slug = _public_report(app)
    with app.app_context():
        get_services(app).cache.clear()

    result = runner.invoke(args=["warm-report-cache", slug, "missing-slug", "--recent"])

    assert result.exit_code == 0, result.output
    assert "Cached 1 of 2 reports" in result.output
    assert "Preloaded 1 recent reports" in result.output
    with app.app_context():
        assert get_services(app).cache.get(cache_keys.report_key(slug)) is not None


def test_clear_report_cache(app, runner):
    slug = _public_report(app)

    result = runner.invoke(args=["clear-report-cache"])

    assert result.exit_code == 0, result.output
    assert "Cleared" in result.output
    with app.app_context():
        assert get_services(app).cache.get(cache_keys.report_key(slug)) is None


def test_cache_health_prints_json(runner):
    result = runner.invoke(args=["cache-health"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["health"]["cache"]["status"] == "healthy"
    assert payload["stats"]["backend"] == "memory"
