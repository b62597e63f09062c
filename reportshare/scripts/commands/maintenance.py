"""Out-of-band maintenance for analytics retention and the report cache."""

import json

import click
from flask.cli import with_appcontext

from ...extensions import db
from ...services.container import get_services


@click.command("cleanup-analytics")
@with_appcontext
def cleanup_analytics_command():
    """Delete view and share rows older than the retention window."""
    services = get_services()
    try:
        print(f"🔄 Removing analytics older than {services.analytics.retention_days} days...")
        result = services.integrated.cleanup_analytics_data()
        print(f"✅ Deleted {result['deleted_views']} views and {result['deleted_shares']} share events.")
    except Exception as e:
        print(f"❌ Analytics cleanup failed: {str(e)}")
        db.session.rollback()
        raise


@click.command("warm-report-cache")
@click.argument("slugs", nargs=-1)
@click.option("--recent", is_flag=True, help="Also preload the recent public reports list.")
@with_appcontext
def warm_report_cache_command(slugs, recent: bool):
    """Prefetch public reports by slug into the cache."""
    reports = get_services().reports
    if not slugs and not recent:
        raise click.UsageError("Pass at least one SLUG or --recent.")

    if slugs:
        cached = reports.warm_up_cache(slugs)
        print(f"✅ Cached {cached} of {len(slugs)} reports.")
    if recent:
        preloaded = reports.preload_recent_reports()
        print(f"✅ Preloaded {preloaded} recent reports.")


@click.command("clear-report-cache")
@with_appcontext
def clear_report_cache_command():
    """Remove every cached report, list and metric."""
    removed = get_services().reports.clear_all_caches()
    print(f"✅ Cleared {removed} cache entries.")


@click.command("cache-health")
@with_appcontext
def cache_health_command():
    """Print cache health and statistics as JSON."""
    reports = get_services().reports
    payload = {
        "health": reports.health_check(),
        "stats": reports.get_cache_stats(),
    }
    click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


MAINTENANCE_COMMANDS = [
    cleanup_analytics_command,
    warm_report_cache_command,
    clear_report_cache_command,
    cache_health_command,
]
