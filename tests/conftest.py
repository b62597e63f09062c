"""
Pytest configuration and shared fixtures for report sharing tests.
"""
import os
import tempfile

import pytest

from reportshare import create_app
from reportshare.extensions import db
from reportshare.models import Report, generate_report_id
from reportshare.services.container import get_services, shutdown_services


class RecordingTransport:
    """Realtime transport that keeps every delivered event in memory."""

    def __init__(self):
        self.events = []
        self.failures_remaining = 0

    def send(self, event):
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise ConnectionError("relay unavailable")
        self.events.append(event)

    def names(self):
        return [event.name for event in self.events]


@pytest.fixture
def realtime():
    return RecordingTransport()


@pytest.fixture(scope='function')
def app(realtime):
    """Create and configure a new app instance for each test."""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'REDIS_URL': None,
        'REALTIME_SYNCHRONOUS': True,
        'APP_BASE_URL': 'https://links.example.test',
        'LOG_LEVEL': 'WARNING',
    }, realtime_transport=realtime)

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
    shutdown_services(app)

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def services(app):
    """Service container with an application context pushed for the test body."""
    with app.app_context():
        yield get_services(app)


@pytest.fixture
def make_report(services):
    """Insert a base analysis record the way the analysis pipeline would."""

    def _make(
        url='https://example.com/articles/my-post',
        *,
        report_id=None,
        owner_id='u1',
        security_score=85,
        created_at=None,
        has_ai_analysis=False,
    ):
        report = Report(
            id=report_id or generate_report_id(),
            url=url,
            owner_id=owner_id,
            security_score=security_score,
            has_ai_analysis=has_ai_analysis,
        )
        if created_at is not None:
            report.created_at = created_at
        db.session.add(report)
        db.session.commit()
        return report.id

    return _make
