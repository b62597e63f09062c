"""Environment-driven configuration for the report sharing service.

Synopsis:
Every supported key is declared once in ``FIELDS`` with its cast and default.
``resolve_settings`` reads the environment through those declarations, records
a warning for each malformed value, and the per-environment config classes are
populated from the result.

Glossary:
- Field: One declared configuration key.
- Diagnostics: Active environment plus the warnings raised while resolving.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

_ENV_KEY = "FLASK_ENV"
_DEFAULT_ENV = "development"
_VALID_ENVS = ("development", "testing", "staging", "production")
_LOCAL_ENVS = ("development", "testing")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}
_LOCAL_BASE_URL = "http://localhost:5000"


# --- ConfigField ---
# Purpose: Declare one configuration key, how to cast it, and its default.
@dataclass(frozen=True)
class ConfigField:
    key: str
    cast: str
    default: Any
    description: str
    default_by_env: dict[str, Any] | None = None

    def default_for_env(self, env_name: str) -> Any:
        if self.default_by_env and env_name in self.default_by_env:
            return self.default_by_env[env_name]
        return self.default


FIELDS: tuple[ConfigField, ...] = (
    ConfigField("FLASK_SECRET_KEY", "str", "devkey-please-change-in-production", "Flask session signing key."),
    ConfigField("DATABASE_URL", "str", None, "SQLAlchemy database URL; postgres:// is normalised."),
    ConfigField("REDIS_URL", "str", None, "Redis URL; unset keeps the cache in-process."),
    ConfigField("CACHE_KEY_PREFIX", "str", "reportshare", "Namespace prepended to every cache key."),
    ConfigField("CACHE_DEFAULT_TTL", "int", 3600, "Default cache TTL in seconds."),
    ConfigField("CACHE_MAX_ENTRIES", "int", 2000, "Capacity of the in-process cache."),
    ConfigField("REPORT_CACHE_TTL", "int", 3600, "TTL of report:<slug> entries."),
    ConfigField("RECENT_REPORTS_CACHE_TTL", "int", 300, "TTL of the recent public reports list."),
    ConfigField("SHARE_ANALYTICS_CACHE_TTL", "int", 1800, "TTL of per-report share analytics."),
    ConfigField("USER_REPORTS_CACHE_TTL", "int", 900, "TTL of per-owner report lists."),
    ConfigField("REPORT_STATS_CACHE_TTL", "int", 1800, "TTL of report statistics."),
    ConfigField("ENGAGEMENT_CACHE_TTL", "int", 1800, "TTL of engagement metrics."),
    ConfigField("DASHBOARD_CACHE_TTL", "int", 3600, "TTL of dashboard aggregates."),
    ConfigField("ANALYTICS_RESPECT_DNT", "bool", True, "Skip view tracking when Do Not Track is sent."),
    ConfigField("ANALYTICS_ANONYMIZE_IPS", "bool", True, "Zero host bits of IPs before storage."),
    ConfigField("ANALYTICS_RETENTION_DAYS", "int", 90, "Age after which views and shares are deleted."),
    ConfigField("ENABLE_VIEW_TRACKING", "bool", True, "Record views on tracked report reads."),
    ConfigField("ENABLE_SHARE_TRACKING", "bool", True, "Record share attempts."),
    ConfigField("ENABLE_ENGAGEMENT_METRICS", "bool", True, "Include engagement in report analytics."),
    ConfigField("REALTIME_WEBHOOK_URL", "str", None, "Relay endpoint for recent-report events."),
    ConfigField("REALTIME_QUEUE_SIZE", "int", 256, "Pending realtime events before dropping."),
    ConfigField("REALTIME_MAX_ATTEMPTS", "int", 3, "Delivery attempts per realtime event."),
    ConfigField("REALTIME_TIMEOUT_SECONDS", "float", 3.0, "Webhook request timeout."),
    ConfigField("REALTIME_SYNCHRONOUS", "bool", False, "Deliver realtime events inline.",
                default_by_env={"testing": True}),
    ConfigField("SHARE_BRAND_NAME", "str", "LinkShield", "Brand named in share text."),
    ConfigField("SHARE_HASHTAGS", "list", ("LinkSecurity", "URLAnalysis", "WebSafety"), "Hashtags on share payloads."),
    ConfigField("LOG_LEVEL", "str", "WARNING", "Root log level.", default_by_env={"production": "INFO"}),
    ConfigField("LOG_REDACT_PII", "bool", True, "Mask emails, secrets and IPs in log lines."),
    ConfigField("SQLALCHEMY_POOL_SIZE", "int", 20, "Production connection pool size."),
    ConfigField("SQLALCHEMY_MAX_OVERFLOW", "int", 10, "Production pool overflow."),
    ConfigField("SQLALCHEMY_POOL_TIMEOUT", "int", 30, "Production pool checkout timeout."),
)


def _cast(field: ConfigField, raw: str, warnings: list[str], default: Any) -> Any:
    if field.cast == "str":
        return raw
    if field.cast == "list":
        return tuple(item.strip() for item in raw.split(",") if item.strip())
    if field.cast == "bool":
        lowered = raw.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        warnings.append(f"{field.key} expected boolean but received {raw!r}; falling back to {default}.")
        return default
    converter = int if field.cast == "int" else float
    try:
        return converter(raw)
    except ValueError:
        warnings.append(f"{field.key} expected {field.cast} but received {raw!r}; falling back to {default}.")
        return default


def resolve_settings(env_name: str, environ: Mapping[str, str]) -> tuple[dict[str, Any], list[str]]:
    """Cast every declared field from ``environ``; blank values count as unset."""
    settings: dict[str, Any] = {}
    warnings: list[str] = []
    for field in FIELDS:
        default = field.default_for_env(env_name)
        raw = (environ.get(field.key) or "").strip()
        settings[field.key] = _cast(field, raw, warnings, default) if raw else default
    return settings, warnings


def normalize_db_url(url: str | None) -> str | None:
    if url and url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url or None


def resolve_environment(environ: Mapping[str, str]) -> str:
    raw_value = (environ.get(_ENV_KEY) or _DEFAULT_ENV).strip().lower() or _DEFAULT_ENV
    if raw_value not in _VALID_ENVS:
        raise RuntimeError(f"Invalid {_ENV_KEY}={raw_value!r}. Expected one of {list(_VALID_ENVS)}.")
    return raw_value


def resolve_base_url(env_name: str, environ: Mapping[str, str], warnings: list[str]) -> str:
    value = (environ.get("APP_BASE_URL") or "").strip()
    if value:
        return value.rstrip("/")
    if env_name in _LOCAL_ENVS:
        warnings.append(f"APP_BASE_URL not set; defaulting to {_LOCAL_BASE_URL} for {env_name}.")
        return _LOCAL_BASE_URL
    raise RuntimeError("APP_BASE_URL must be set for staging and production environments.")


ACTIVE_ENV = resolve_environment(os.environ)
SETTINGS, _WARNINGS = resolve_settings(ACTIVE_ENV, os.environ)
_BASE_URL = resolve_base_url(ACTIVE_ENV, os.environ, _WARNINGS)
_DATABASE_URL = normalize_db_url(SETTINGS["DATABASE_URL"])


class BaseConfig:
    FLASK_ENV = ACTIVE_ENV
    SECRET_KEY = SETTINGS["FLASK_SECRET_KEY"]
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    APP_BASE_URL = _BASE_URL

    # Kill switches applied before any database-backed flags are loaded.
    FEATURE_FLAGS: dict[str, bool] = {}


for _key, _value in SETTINGS.items():
    if _key not in {"FLASK_SECRET_KEY", "DATABASE_URL"} and not _key.startswith("SQLALCHEMY_"):
        setattr(BaseConfig, _key, _value)


class DevelopmentConfig(BaseConfig):
    ENV = "development"
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _DATABASE_URL or "sqlite:///" + os.path.join(
        os.path.abspath(os.path.dirname(__file__)), "..", "instance", "reportshare.db"
    )
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True, "pool_recycle": 3600}


class TestingConfig(BaseConfig):
    ENV = "testing"
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    REDIS_URL = None
    REALTIME_SYNCHRONOUS = True


class StagingConfig(BaseConfig):
    ENV = "staging"
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _DATABASE_URL
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


class ProductionConfig(BaseConfig):
    ENV = "production"
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _DATABASE_URL
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_size": SETTINGS["SQLALCHEMY_POOL_SIZE"],
        "max_overflow": SETTINGS["SQLALCHEMY_MAX_OVERFLOW"],
        "pool_timeout": SETTINGS["SQLALCHEMY_POOL_TIMEOUT"],
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


CONFIG_BY_ENV = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "staging": StagingConfig,
    "production": ProductionConfig,
}

Config = CONFIG_BY_ENV[ACTIVE_ENV]
ENV_DIAGNOSTICS = {
    "active": ACTIVE_ENV,
    "source": _ENV_KEY,
    "warnings": tuple(_WARNINGS),
}
