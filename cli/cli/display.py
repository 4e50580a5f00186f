"""Rich output formatting for the salonmeter CLI.

All functions write to a :class:`rich.console.Console` instance (typically
bound to *stderr*) so that machine-readable output on *stdout* is never
polluted with human-readable decoration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

if TYPE_CHECKING:
    from api.schemas import UsageOverview
    from api.services.usage_aggregator import AggregationReport
    from meter_engine.observability.anomaly import ObservabilityAlert
    from meter_engine.observability.summary import ObservabilitySummary


# ---------------------------------------------------------------------------
# Colour mapping
# ---------------------------------------------------------------------------

_SEVERITY_COLOURS: dict[str, str] = {
    "critical": "red",
    "warning": "yellow",
    "info": "cyan",
}

_OUTCOME_COLOURS: dict[str, str] = {
    "ok": "green",
    "failed": "red",
}


def _coloured(value: str, colours: dict[str, str]) -> str:
    colour = colours.get(value, "white")
    return f"[{colour}]{value}[/{colour}]"


def _number(value: float | None) -> str:
    if value is None:
        return "unlimited"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


# ---------------------------------------------------------------------------
# Usage overview
# ---------------------------------------------------------------------------


def display_overview(console: Console, overview: UsageOverview) -> None:
    """Render quota consumption for one tenant.

    Parameters
    ----------
    console:
        Rich console to write to (typically stderr).
    overview:
        The tenant's usage overview.
    """
    console.print(
        Panel(
            f"[bold]Tenant:[/bold] {overview.tenant_id}\n[bold]Tier:[/bold]   {overview.tier}",
            title="Usage Overview",
            border_style="blue",
        )
    )

    table = Table(title="Quotas", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Quota", style="bold")
    table.add_column("Period")
    table.add_column("Used", justify="right")
    table.add_column("Limit", justify="right")
    table.add_column("Remaining", justify="right")

    for quota in overview.quotas:
        remaining = _number(quota.remaining)
        if quota.remaining is not None and quota.remaining <= 0:
            remaining = f"[red]{remaining}[/red]"
        table.add_row(quota.label, quota.period, _number(quota.used), _number(quota.limit), remaining)

    console.print(table)
    console.print(f"[dim]{len(overview.recent_metrics)} recent metric row(s).[/dim]")


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------


def display_alerts(console: Console, alerts: list[ObservabilityAlert], title: str = "Alerts") -> None:
    if not alerts:
        console.print("[green]No anomalies detected.[/green]")
        return

    table = Table(title=title, show_lines=False, pad_edge=True, expand=False)
    table.add_column("Severity")
    table.add_column("Metric", style="bold")
    table.add_column("Observed", justify="right")
    table.add_column("Baseline", justify="right")
    table.add_column("Description")

    for alert in alerts:
        table.add_row(
            _coloured(alert.severity.value, _SEVERITY_COLOURS),
            alert.metric,
            f"{alert.observed:.4g}",
            "-" if alert.baseline is None else f"{alert.baseline:.4g}",
            alert.description,
        )
    console.print(table)


def display_summary(console: Console, summary: ObservabilitySummary) -> None:
    """Render the observability summary: headline numbers, daily table, alerts."""
    latency = summary.latency
    messaging = summary.messaging
    header_lines = [
        f"[bold]Tenant:[/bold]    {summary.tenant_id}",
        f"[bold]Window:[/bold]    {summary.timeframe.start:%Y-%m-%d} .. {summary.timeframe.end:%Y-%m-%d}",
        f"[bold]Latency:[/bold]   p50 {latency.p50:.1f} ms, p95 {latency.p95:.1f} ms, avg {latency.average:.1f} ms",
        f"[bold]Messaging:[/bold] {_number(messaging.success)} ok, {_number(messaging.failure)} failed "
        f"({messaging.failure_rate:.1%})",
    ]
    console.print(Panel("\n".join(header_lines), title="Observability", border_style="blue"))

    if summary.error_rate:
        table = Table(title="Daily Requests", show_lines=False, pad_edge=True, expand=False)
        table.add_column("Date")
        table.add_column("Requests", justify="right")
        table.add_column("Errors", justify="right")
        table.add_column("Error Rate", justify="right")
        for point in summary.error_rate:
            table.add_row(point.date, _number(point.requests), _number(point.errors), f"{point.rate:.2%}")
        console.print(table)
    else:
        console.print("[dim]No request metrics in the window.[/dim]")

    display_alerts(console, summary.alerts)


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


def display_aggregation(console: Console, report: AggregationReport) -> None:
    console.print(
        f"Aggregated [bold]{report.tenants_processed}[/bold] tenant(s), "
        f"wrote [bold]{report.metrics_written}[/bold] metric(s)."
    )
    for tenant_id, error in sorted(report.failures.items()):
        console.print(f"[red]  {tenant_id}: {error}[/red]")


def display_sweep(console: Console, results: dict[str, list[ObservabilityAlert]]) -> None:
    if not results:
        console.print("[green]No anomalies detected for any tenant.[/green]")
        return
    for tenant_id in sorted(results):
        display_alerts(console, results[tenant_id], title=f"Alerts for {tenant_id}")


def display_job_results(console: Console, results: dict[str, str]) -> None:
    table = Table(title="Scheduled Jobs", show_lines=False, pad_edge=True, expand=False)
    table.add_column("Job", style="bold")
    table.add_column("Outcome")
    for name, outcome in results.items():
        table.add_row(name, _coloured(outcome, _OUTCOME_COLOURS))
    console.print(table)
