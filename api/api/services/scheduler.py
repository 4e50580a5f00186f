"""Entry point for the externally triggered scheduled jobs.

A cron trigger (``salonmeter jobs``) calls :func:`run_scheduled_jobs`,
which runs the usage aggregation and the anomaly sweep side by side.  The
jobs share nothing; a failure in one is logged and does not cancel the
other.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.services.observability_service import run_anomaly_sweep
from api.services.usage_aggregator import UsageAggregator

logger = logging.getLogger(__name__)

JOB_OK = "ok"
JOB_FAILED = "failed"


async def _run_job(name: str, job: Awaitable[Any]) -> str:
    try:
        await job
    except Exception:
        logger.error("Scheduled job %s failed", name, exc_info=True, extra={"job": name})
        return JOB_FAILED
    return JOB_OK


async def run_scheduled_jobs(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    reference_timezone: str = "UTC",
    window_days: int = 14,
    row_limit: int = 5000,
    now: datetime | None = None,
) -> dict[str, str]:
    """Run aggregation and the anomaly sweep; return each job's outcome."""
    aggregator = UsageAggregator(session_factory, reference_timezone=reference_timezone)
    jobs = {
        "usage_aggregation": aggregator.run(now),
        "anomaly_sweep": run_anomaly_sweep(
            session_factory,
            window_days=window_days,
            row_limit=row_limit,
            now=now,
        ),
    }
    outcomes = await asyncio.gather(*(_run_job(name, job) for name, job in jobs.items()))
    results = dict(zip(jobs, outcomes, strict=True))
    logger.info("Scheduled jobs finished: %s", results)
    return results
