"""Report sharing service.

Synopsis:
``create_app`` loads configuration, binds the database, validates the static
lookup tables, builds the service graph and registers the maintenance CLI.
"""

import logging
import os
from typing import Any

from flask import Flask
from sqlalchemy.pool import StaticPool

from .config import ENV_DIAGNOSTICS
from .extensions import db, migrate
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

_SQLITE_REJECTED_POOL_OPTIONS = ("pool_size", "max_overflow", "pool_timeout")
_MEMORY_SQLITE_URI = "sqlite:///:memory:"


def create_app(config: dict[str, Any] | None = None, *, realtime_transport=None) -> Flask:
    app = Flask(__name__)
    os.makedirs(app.instance_path, exist_ok=True)

    _apply_config(app, config or {})
    configure_logging(app)
    _report_env_warnings()

    db.init_app(app)
    migrate.init_app(app, db)
    from . import models  # noqa: F401  registers tables for Alembic autogenerate

    _validate_lookup_tables()

    from .scripts.commands.registry import register_commands
    from .services.container import init_services

    init_services(app, realtime_transport=realtime_transport)
    register_commands(app)

    @app.teardown_appcontext
    def _discard_failed_transaction(exc):
        if exc is None:
            return
        try:
            db.session.rollback()
        except Exception:
            logger.warning("Rollback after failed app context did not complete", exc_info=True)

    if _env_flag("SQLALCHEMY_CREATE_ALL"):
        _create_tables(app)
    return app


def _apply_config(app: Flask, overrides: dict[str, Any]) -> None:
    app.config.from_object("reportshare.config.Config")
    app.config.update(overrides)
    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS
    if "DATABASE_URL" in overrides:
        app.config["SQLALCHEMY_DATABASE_URI"] = overrides["DATABASE_URL"]

    uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if not uri:
        raise RuntimeError("DATABASE_URL must be set outside development and testing")
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options_for(
        uri, app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {}
    )


def engine_options_for(uri: str, options: dict[str, Any]) -> dict[str, Any]:
    """SQLite takes no queue-pool sizing; an in-memory URI needs one shared connection."""
    if not uri.startswith("sqlite"):
        return dict(options)
    resolved = {key: value for key, value in options.items() if key not in _SQLITE_REJECTED_POOL_OPTIONS}
    if uri == _MEMORY_SQLITE_URI:
        resolved.update(poolclass=StaticPool, connect_args={"check_same_thread": False})
    return resolved


def _report_env_warnings() -> None:
    for warning in ENV_DIAGNOSTICS.get("warnings", ()):
        logger.warning("Environment configuration warning: %s", warning)


def _validate_lookup_tables() -> None:
    from .services.feature_gate import validate_feature_tables
    from .utils.report_display import validate_display_tables

    validate_feature_tables()
    validate_display_tables()


def _env_flag(name: str) -> bool:
    return (os.environ.get(name) or "").strip().lower() in {"1", "true", "yes", "on"}


def _create_tables(app: Flask) -> None:
    # Local convenience only; deployed databases are built by Alembic.
    logger.info("Creating tables via db.create_all() (SQLALCHEMY_CREATE_ALL)")
    with app.app_context():
        db.create_all()
