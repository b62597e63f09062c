"""Per-app service wiring.

Synopsis:
``build_services`` constructs the cache, notifier, store and every service once
per Flask app; ``shutdown_services`` tears them down. Services are reached via
``get_services()`` inside an app context instead of module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from flask import Flask, current_app

from ..utils.cache_manager import CacheService, build_cache_service
from .analytics_service import AnalyticsService
from .cached_report_service import CacheTTLs, CachedReportService
from .feature_gate import FeatureGate, load_feature_flags
from .integrated_service import IntegratedService, IntegrationOptions
from .realtime_notifier import RealtimeNotifier, build_notifier
from .report_access_service import ReportAccessService
from .report_store import ReportStore

logger = logging.getLogger(__name__)

EXTENSION_KEY = "reportshare"


@dataclass
class ReportShareServices:
    cache: CacheService
    notifier: RealtimeNotifier
    store: ReportStore
    report_access: ReportAccessService
    reports: CachedReportService
    analytics: AnalyticsService
    integrated: IntegratedService
    feature_gate: FeatureGate

    def refresh_feature_flags(self) -> dict[str, bool]:
        """Reload kill switches from the ``feature_flag`` table."""
        flags = load_feature_flags()
        self.feature_gate.set_flags(flags)
        return flags

    def shutdown(self, timeout: float = 5.0) -> None:
        self.notifier.stop(timeout)
        self.cache.close()


def build_services(
    config: Mapping[str, Any],
    *,
    cache: CacheService | None = None,
    realtime_transport=None,
) -> ReportShareServices:
    cache = cache or build_cache_service(config)
    notifier = build_notifier(config, transport=realtime_transport)
    store = ReportStore()

    report_access = ReportAccessService(
        store,
        notifier,
        base_url=config.get("APP_BASE_URL") or "",
        brand_name=config.get("SHARE_BRAND_NAME") or "",
        hashtags=config.get("SHARE_HASHTAGS") or (),
    )
    analytics = AnalyticsService(
        store,
        cache,
        respect_do_not_track=bool(config.get("ANALYTICS_RESPECT_DNT", True)),
        anonymize_ips=bool(config.get("ANALYTICS_ANONYMIZE_IPS", True)),
        retention_days=int(config.get("ANALYTICS_RETENTION_DAYS", 90)),
        engagement_ttl=int(config.get("ENGAGEMENT_CACHE_TTL", 1800)),
        dashboard_ttl=int(config.get("DASHBOARD_CACHE_TTL", 3600)),
    )
    reports = CachedReportService(
        report_access,
        cache,
        analytics=analytics,
        ttls=CacheTTLs.from_config(config),
    )
    integrated = IntegratedService(reports, analytics, store, IntegrationOptions.from_config(config))

    return ReportShareServices(
        cache=cache,
        notifier=notifier,
        store=store,
        report_access=report_access,
        reports=reports,
        analytics=analytics,
        integrated=integrated,
        feature_gate=FeatureGate(config.get("FEATURE_FLAGS") or {}),
    )


def init_services(app: Flask, **overrides) -> ReportShareServices:
    existing = app.extensions.get(EXTENSION_KEY)
    if existing is not None:
        return existing
    services = build_services(app.config, **overrides)
    app.extensions[EXTENSION_KEY] = services
    logger.info(
        "Report sharing services ready (cache=%s, realtime=%s)",
        getattr(services.cache.backend, "backend_name", "unknown"),
        type(services.notifier.transport).__name__,
    )
    return services


def get_services(app: Flask | None = None) -> ReportShareServices:
    target = app or current_app
    services = target.extensions.get(EXTENSION_KEY)
    if services is None:
        raise RuntimeError("Report sharing services are not initialised for this app")
    return services


def shutdown_services(app: Flask, timeout: float = 5.0) -> None:
    services = app.extensions.pop(EXTENSION_KEY, None)
    if services is None:
        return
    services.shutdown(timeout)
    logger.info("Report sharing services shut down")
