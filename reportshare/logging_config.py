"""Log formatting and PII redaction for the report sharing service.

Synopsis:
``configure_logging`` sets levels from ``LOG_LEVEL``, picks the dev or prod
format, quiets chatty third-party loggers and attaches ``PiiRedactionFilter``
to every installed handler.

Glossary:
- Redaction rule: ``(pattern, replacement)`` applied to the rendered message.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable

from flask import Flask

DEV_FORMAT = "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s"
PROD_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3", "alembic.runtime.migration")

# Applied in order; the secret rule must run before the IPv4 rule.
REDACTION_RULES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"[A-Za-z0-9_.+-]+@[A-Za-z0-9-]+\.[A-Za-z0-9-.]+"), "[REDACTED_EMAIL]"),
    (
        re.compile(r"(token|api[_-]?key|secret|password|passwd|authorization)\s*[:=]\s*([^\s,;]+)", re.IGNORECASE),
        r"\1=[REDACTED]",
    ),
    (re.compile(r"Bearer\s+[A-Za-z0-9\-_.=:+/]+", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"\b(\d{1,3}\.\d{1,3}\.\d{1,3})\.\d{1,3}\b"), r"\1.x"),
)


def redact(message: str) -> str:
    for pattern, replacement in REDACTION_RULES:
        message = pattern.sub(replacement, message)
    return message


class PiiRedactionFilter(logging.Filter):
    """Rewrites the rendered message in place; never drops a record."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            rendered = record.getMessage()
        except (TypeError, ValueError):
            # Mismatched format args; leave the record for the handler to report.
            return True
        record.msg = redact(rendered)
        record.args = ()
        return True


def configure_logging(app: Flask) -> None:
    level = _coerce_level(app.config.get("LOG_LEVEL", "DEBUG" if app.debug else "INFO"))
    for logger_name in (None, "reportshare"):
        logging.getLogger(logger_name).setLevel(level)
    app.logger.setLevel(level)

    if level > logging.DEBUG:
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(logging.WARNING)

    production = app.config.get("ENV") == "production" and not app.debug
    formatter = logging.Formatter(PROD_FORMAT if production else DEV_FORMAT)
    redact_pii = bool(app.config.get("LOG_REDACT_PII", True))
    _install(logging.getLogger().handlers, formatter, redact_pii)
    _install(app.logger.handlers, formatter, redact_pii)


def _install(handlers: Iterable[logging.Handler], formatter: logging.Formatter, redact_pii: bool) -> None:
    for handler in handlers:
        handler.setFormatter(formatter)
        if redact_pii and not any(isinstance(f, PiiRedactionFilter) for f in handler.filters):
            handler.addFilter(PiiRedactionFilter())


def _coerce_level(raw_level) -> int:
    if isinstance(raw_level, int):
        return raw_level
    name = str(raw_level or "").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO
