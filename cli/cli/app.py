"""salonmeter CLI -- operator interface for the metering engine.

Runs the scheduled jobs (invoked by cron) and inspects individual tenants.
Human-readable output goes to *stderr* via Rich; ``--json`` writes
machine-readable results to *stdout* so the jobs compose with other tools.

Exit codes: 0 success, 1 a job or tenant failed, 3 the store was
unreachable or the command could not run.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer
from rich.console import Console

from cli.display import (
    display_aggregation,
    display_job_results,
    display_overview,
    display_summary,
    display_sweep,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# App & global state
# ---------------------------------------------------------------------------

app = typer.Typer(
    name="salonmeter",
    help="Salon usage metering, quota and observability jobs.",
    no_args_is_help=True,
)
console = Console(stderr=True)

# Mutable global options populated by the Typer callback.
_json_output: bool = False
_database_url: str | None = None


# ---------------------------------------------------------------------------
# Callback -- global options
# ---------------------------------------------------------------------------


@app.callback()
def _global_options(
    json_mode: bool = typer.Option(
        False,
        "--json/--no-json",
        help="Emit structured JSON to stdout instead of human-readable output.",
    ),
    database_url: str | None = typer.Option(
        None,
        "--database-url",
        help="Usage store URL. Defaults to METER_DATABASE_URL.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Global options applied to every command."""
    global _json_output, _database_url  # noqa: PLW0603
    _json_output = json_mode
    _database_url = database_url
    _configure_logging(verbose)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _settings() -> Any:
    from meter_engine.config import load_settings

    overrides: dict[str, Any] = {}
    if _database_url:
        overrides["database_url"] = _database_url
    return load_settings(**overrides)


def _configure_logging(verbose: bool) -> None:
    from meter_engine.config import load_settings

    level = logging.DEBUG if verbose else logging.INFO
    if load_settings().structured_logging:
        from api.middleware.json_formatter import configure_json_logging

        configure_json_logging(level)
    else:
        logging.basicConfig(level=level, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _run_with_store(func: Callable[[Any, Any], Awaitable[T]]) -> T:
    """Run ``func(settings, session_factory)`` against a fresh engine.

    The engine is disposed on every exit path.  Store connectivity failures
    exit with code 3.
    """
    from meter_engine.metering.errors import StoreUnavailableError
    from meter_engine.state.database import get_engine, get_session_factory
    from sqlalchemy.exc import DBAPIError

    settings = _settings()

    async def _main() -> T:
        engine = get_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
        try:
            return await func(settings, get_session_factory(engine))
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_main())
    except (StoreUnavailableError, DBAPIError) as exc:
        console.print(f"[red]Usage store unavailable: {exc}[/red]")
        raise typer.Exit(code=3) from exc


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


# ---------------------------------------------------------------------------
# init-db / add-tenant
# ---------------------------------------------------------------------------


@app.command("init-db")
def init_db() -> None:
    """Create the usage store tables (idempotent)."""
    from meter_engine.state.database import get_engine
    from meter_engine.state.sqlite_adapter import create_local_tables

    settings = _settings()

    async def _main() -> None:
        engine = get_engine(settings.database_url)
        try:
            await create_local_tables(engine)
        finally:
            await engine.dispose()

    asyncio.run(_main())
    console.print("[green]Usage store tables ready.[/green]")


@app.command("add-tenant")
def add_tenant(
    tenant_id: str = typer.Argument(..., help="Tenant identifier."),
    tier: str = typer.Option("starter", "--tier", help="Service tier (starter | growth | scale)."),
    name: str = typer.Option("", "--name", help="Display name."),
) -> None:
    """Register or update a tenant in the local tenant directory."""
    from meter_engine.metering.quotas import TenantTier
    from meter_engine.state.database import session_scope
    from meter_engine.state.repository import TenantRepository

    resolved = TenantTier.parse(tier)
    if resolved.value != tier.strip().lower():
        console.print(f"[red]Unknown tier '{tier}'. Use starter, growth or scale.[/red]")
        raise typer.Exit(code=3)

    async def _add(settings: Any, factory: Any) -> None:
        async with session_scope(factory) as session:
            await TenantRepository(session).upsert(tenant_id, resolved.value, name)

    _run_with_store(_add)
    console.print(f"Tenant [bold]{tenant_id}[/bold] set to tier [bold]{resolved.value}[/bold].")


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


@app.command()
def aggregate() -> None:
    """Roll this month's usage events into per-tenant period metrics."""
    from api.services.usage_aggregator import UsageAggregator

    async def _aggregate(settings: Any, factory: Any) -> Any:
        return await UsageAggregator(factory, reference_timezone=settings.reference_timezone).run()

    report = _run_with_store(_aggregate)

    if _json_output:
        _write_json(
            {
                "tenants_processed": report.tenants_processed,
                "metrics_written": report.metrics_written,
                "failures": report.failures,
            }
        )
    else:
        display_aggregation(console, report)

    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def sweep() -> None:
    """Evaluate anomaly detectors for every tenant and log the alerts."""
    from api.services.observability_service import run_anomaly_sweep

    async def _sweep(settings: Any, factory: Any) -> Any:
        return await run_anomaly_sweep(
            factory,
            window_days=settings.observability_window_days,
            row_limit=settings.observability_row_limit,
        )

    results = _run_with_store(_sweep)

    if _json_output:
        _write_json({tenant: [a.model_dump(mode="json") for a in alerts] for tenant, alerts in results.items()})
    else:
        display_sweep(console, results)


@app.command()
def jobs() -> None:
    """Run every scheduled job (aggregation and anomaly sweep) once."""
    from api.services.scheduler import JOB_OK, run_scheduled_jobs

    async def _jobs(settings: Any, factory: Any) -> dict[str, str]:
        return await run_scheduled_jobs(
            factory,
            reference_timezone=settings.reference_timezone,
            window_days=settings.observability_window_days,
            row_limit=settings.observability_row_limit,
        )

    results = _run_with_store(_jobs)

    if _json_output:
        _write_json(results)
    else:
        display_job_results(console, results)

    if any(outcome != JOB_OK for outcome in results.values()):
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Tenant inspection
# ---------------------------------------------------------------------------


@app.command()
def overview(tenant_id: str = typer.Argument(..., help="Tenant identifier.")) -> None:
    """Show a tenant's quota consumption for the current period."""
    from api.services.usage_overview import UsageOverviewBuilder
    from meter_engine.state.database import session_scope

    async def _overview(settings: Any, factory: Any) -> Any:
        async with session_scope(factory) as session:
            builder = UsageOverviewBuilder(
                session,
                reference_timezone=settings.reference_timezone,
                recent_limit=settings.recent_metrics_limit,
            )
            return await builder.build(tenant_id)

    result = _run_with_store(_overview)

    if _json_output:
        _write_json(result.model_dump(mode="json"))
    else:
        display_overview(console, result)


@app.command()
def summary(tenant_id: str = typer.Argument(..., help="Tenant identifier.")) -> None:
    """Show a tenant's trailing-window observability summary and alerts."""
    from api.services.observability_service import ObservabilityService
    from meter_engine.state.database import session_scope

    async def _summary(settings: Any, factory: Any) -> Any:
        async with session_scope(factory) as session:
            service = ObservabilityService(
                session,
                window_days=settings.observability_window_days,
                row_limit=settings.observability_row_limit,
            )
            return await service.summarize(tenant_id)

    result = _run_with_store(_summary)

    if _json_output:
        _write_json(result.model_dump(mode="json"))
    else:
        display_summary(console, result)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host", help="Bind address. Defaults to API_HOST."),
    port: int | None = typer.Option(None, "--port", help="Bind port. Defaults to API_PORT."),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes (development)."),
) -> None:
    """Run the metering API with uvicorn."""
    import uvicorn

    from api.config import load_api_settings

    settings = load_api_settings()
    bind_host = host or settings.host
    bind_port = port or settings.port

    console.print(f"[green]✓[/green] API server starting on http://{bind_host}:{bind_port}")
    console.print(f"[green]✓[/green] OpenAPI docs at http://{bind_host}:{bind_port}/docs")

    uvicorn.run(
        "api.main:app",
        host=bind_host,
        port=bind_port,
        reload=reload,
        log_level="info",
        access_log=False,
    )
