# Stratus CLI — main entry point
"""stratus CLI — run syncs and inspect cost signals from the terminal."""

from __future__ import annotations

import click

from ..config import settings


def _orchestrator():
    from ..gateways.azure.arm import build_azure_gateways
    from ..services.orchestrator import SyncOrchestrator

    return SyncOrchestrator(build_azure_gateways())


@click.group()
@click.version_option(version=settings.app_version, prog_name="stratus")
@click.option("-v", "--verbose", is_flag=True, help="Debug-level file logging")
def cli(verbose: bool):
    """Stratus — cloud cost sync, anomaly detection and budget alerts."""
    from ..common import init_logging

    init_logging(verbose=verbose)


@cli.command()
def sync():
    """Run a full sync now."""
    from rich.table import Table

    from ..common import console, die, get_log_file, print_header, print_step, print_success, print_warning
    from ..db import init_db
    from ..services.orchestrator import SyncError

    print_header("Stratus full sync")
    init_db()
    print_step("Pulling subscriptions, resources, costs, metrics and recommendations...")
    try:
        report = _orchestrator().run_full_sync()
    except SyncError as e:
        die(f"Sync failed: {e} (log: {get_log_file()})")
        return

    if report.get("skipped"):
        print_warning("A sync is already running — skipped")
        return

    table = Table(title="Sync report")
    table.add_column("Stage", style="cyan")
    table.add_column("Count", justify="right")
    for stage, count in report["steps"].items():
        table.add_row(stage, str(count))
    console.print(table)
    print_success(f"Sync completed in {report['duration_ms'] / 1000:.1f}s")


@cli.command()
def status():
    """Show configuration, last sync report and open alerts."""
    from ..common import console
    from ..db import init_db, session_scope
    from ..services.alerts import alert_stats

    init_db()
    console.print(f"[bold blue]Stratus[/] v{settings.app_version}")
    console.print(f"Database: {settings.effective_database_url}")
    console.print(f"Environment: {settings.environment}")
    console.print(f"Subscriptions: {', '.join(settings.subscription_id_list) or 'all accessible'}")

    state = _orchestrator().status()
    console.print(f"Schedule: {state['schedule']} ({'enabled' if settings.sync_enabled else 'disabled'})")
    last = state["last_report"]
    if last:
        console.print(f"Last sync: {last['started_at']} ({last['duration_ms']} ms) {last['steps']}")
    else:
        console.print("[dim]No sync has completed yet.[/dim]")

    with session_scope() as db:
        stats = alert_stats(db)
    console.print(
        f"Alerts: [red]{stats['critical']} critical[/] · [yellow]{stats['high']} high[/] · "
        f"{stats['medium']} medium · {stats['low']} low · {stats['unread']} unread"
    )


@cli.command()
@click.option("--lookback", default=settings.anomaly_lookback_days, show_default=True, help="Baseline window in days")
@click.option("--threshold", default=settings.anomaly_z_threshold, show_default=True, help="z-score cutoff")
def detect(lookback: int, threshold: float):
    """Run anomaly detection over stored cost records."""
    from ..common import print_success
    from ..db import init_db, session_scope
    from ..services.anomaly import detect_anomalies

    init_db()
    with session_scope() as db:
        count = detect_anomalies(db, lookback_days=lookback, z_threshold=threshold)
    print_success(f"{count} new anomalies")


@cli.command()
@click.option("--days", default=settings.forecast_horizon_days, show_default=True, help="Days to project")
@click.option("--history", default=settings.forecast_history_days, show_default=True, help="Days of history to fit")
def forecast(days: int, history: int):
    """Project daily cost from stored history."""
    from rich.table import Table

    from ..common import console, print_warning
    from ..db import init_db, session_scope
    from ..services.forecaster import InsufficientData, forecast_from_store

    init_db()
    with session_scope() as db:
        result = forecast_from_store(db, history_days=history, horizon_days=days)

    if isinstance(result, InsufficientData):
        print_warning(result.message)
        return

    table = Table(title=f"Forecast — {result.summary.trend} ({result.summary.trend_rate:+.2f}/day)")
    table.add_column("Date", style="cyan")
    table.add_column("Predicted", justify="right")
    table.add_column("Range", justify="right")
    table.add_column("Conf.", justify="right")
    for p in result.predictions:
        table.add_row(
            p.date.isoformat(), f"${p.predicted_cost:,.2f}",
            f"${p.lower_bound:,.2f} – ${p.upper_bound:,.2f}", f"{p.confidence}%",
        )
    console.print(table)
    console.print(
        f"Total: [bold]${result.summary.total_forecasted_cost:,.2f}[/] "
        f"(avg ${result.summary.avg_daily_forecast:,.2f}/day)"
    )


# ---------------------------------------------------------------------------
# Budget commands
# ---------------------------------------------------------------------------


@cli.group()
def budgets():
    """Inspect budgets and evaluate thresholds."""
    pass


@budgets.command("check")
@click.option("--alert/--no-alert", default=True, help="Create threshold alerts as well as printing status")
def budgets_check(alert: bool):
    """Recompute spend and show utilisation for every active budget."""
    from rich.table import Table

    from ..common import console, print_success
    from ..db import init_db, session_scope
    from ..services.alerts import check_budget_alerts
    from ..services.budget_monitor import budget_status, recompute_budget_spend

    init_db()
    with session_scope() as db:
        recompute_budget_spend(db)
        db.commit()
        statuses = budget_status(db)
        created = check_budget_alerts(db)["alerts_created"] if alert else 0

    if not statuses:
        console.print("[dim]No active budgets.[/dim]")
        return

    colours = {"ok": "green", "warning": "yellow", "exceeded": "red"}
    table = Table(title="Budgets")
    table.add_column("Name", style="cyan")
    table.add_column("Period")
    table.add_column("Spend", justify="right")
    table.add_column("Amount", justify="right")
    table.add_column("Used", justify="right")
    table.add_column("Status")
    for s in statuses:
        table.add_row(
            s.name, s.period, f"${s.current_spend:,.2f}", f"${s.amount:,.2f}",
            f"{s.utilization:.0f}%", f"[{colours.get(s.status, 'white')}]{s.status}[/]",
        )
    console.print(table)
    if alert:
        print_success(f"{created} budget alerts created")


@cli.command()
def serve():
    """Start the Stratus API server."""
    import uvicorn
    uvicorn.run(
        "stratus.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    cli()
