import logging

import pytest
from sqlalchemy.pool import StaticPool

from reportshare import engine_options_for
from reportshare.errors import AccessDenied, NotFound, ReportShareError, SlugExhausted
from reportshare.logging_config import PiiRedactionFilter
from reportshare.services.container import EXTENSION_KEY, get_services, init_services, shutdown_services
from reportshare.utils.cache_manager import SimpleCache


def test_services_are_built_once_per_app(app):
    services = app.extensions[EXTENSION_KEY]
    assert init_services(app) is services
    assert get_services(app) is services
    assert isinstance(services.cache.backend, SimpleCache)
    assert services.reports.inner is services.report_access
    assert services.integrated.reports is services.reports
    assert services.notifier.synchronous is True


def test_config_flows_into_services(app):
    services = get_services(app)
    assert services.report_access.base_url == "https://links.example.test"
    assert services.analytics.retention_days == app.config["ANALYTICS_RETENTION_DAYS"]


def test_shutdown_removes_container(app):
    shutdown_services(app)
    with pytest.raises(RuntimeError):
        get_services(app)
    shutdown_services(app)


def test_cli_commands_are_registered(app):
    for name in ("cleanup-analytics", "warm-report-cache", "clear-report-cache", "cache-health"):
        assert name in app.cli.commands


@pytest.mark.parametrize(
    "error,code",
    [(NotFound(), "not_found"), (AccessDenied(), "access_denied"), (SlugExhausted(), "slug_exhausted")],
)
def test_error_payloads(error, code):
    assert isinstance(error, ReportShareError)
    assert error.to_dict() == {"error": code, "message": error.message}


def test_access_denied_message_matches_not_found_wording():
    assert AccessDenied().message == "Report not found or access denied"


def test_pii_filter_redacts_log_lines():
    record = logging.LogRecord(
        "reportshare", logging.WARNING, __file__, 1,
        "user %s from %s token=%s", ("a@b.example", "203.0.113.42", "s3cret"), None,
    )
    PiiRedactionFilter().filter(record)
    message = record.getMessage()
    assert "a@b.example" not in message
    assert "203.0.113.x" in message
    assert "s3cret" not in message


def test_sqlite_engine_options_drop_pool_sizing():
    options = {"pool_size": 20, "max_overflow": 10, "pool_pre_ping": True}
    assert engine_options_for("sqlite:////tmp/x.db", options) == {"pool_pre_ping": True}
    memory = engine_options_for("sqlite:///:memory:", options)
    assert memory["poolclass"] is StaticPool
    assert engine_options_for("postgresql://db/reports", options) == options
