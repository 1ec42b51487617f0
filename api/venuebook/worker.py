"""Celery worker: scheduled calendar reconciliation.

Beat runs a short-interval pass over today's reservations and a nightly pass
over the month. force_resync is queued on demand. Every pass ends with the
tombstone sweep, and the run lock makes overlapping passes skip instead of
racing each other.

Each task runs its pass under a fresh asyncio.run(), with its own engine.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict

from celery import Celery
from celery.schedules import crontab

from venuebook.core.config import settings
from venuebook.core.database import build_session_factory
from venuebook.services.calendar_adapter import build_calendar_adapter
from venuebook.services.leases import build_run_lock
from venuebook.services.reconciliation import ReconciliationEngine, SyncReport

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

celery_app = Celery(
    "venuebook",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone=settings.timezone,
    enable_utc=True,
)

celery_app.conf.beat_schedule = {
    "calendar-sync-today": {
        "task": "venuebook.worker.sync_today",
        "schedule": crontab(minute=f"*/{settings.sync_short_interval_minutes}"),
    },
    "calendar-sync-month": {
        "task": "venuebook.worker.sync_month",
        "schedule": crontab(minute=0, hour=settings.sync_nightly_hour),
    },
}


async def _run(action: Callable[[ReconciliationEngine], Awaitable[SyncReport]]) -> dict:
    engine, session_factory = build_session_factory(settings.database_url)
    adapter = build_calendar_adapter(settings)
    run_lock = build_run_lock(settings)
    try:
        reconciler = ReconciliationEngine(session_factory, adapter, run_lock, timezone=settings.timezone)
        report = await action(reconciler)
        return asdict(report)
    finally:
        await adapter.aclose()
        close = getattr(run_lock, "close", None)
        if close is not None:
            await close()
        await engine.dispose()


def _run_pass(name: str, action: Callable[[ReconciliationEngine], Awaitable[SyncReport]]) -> dict:
    if not settings.calendar_enabled:
        logger.info("Calendar sync disabled, skipping %s", name)
        return {"skipped": True}
    return asyncio.run(_run(action))


@celery_app.task(name="venuebook.worker.sync_today")
def sync_today() -> dict:
    return _run_pass("sync_today", lambda r: r.sync_today())


@celery_app.task(name="venuebook.worker.sync_month")
def sync_month() -> dict:
    return _run_pass("sync_month", lambda r: r.sync_month())


@celery_app.task(name="venuebook.worker.force_resync")
def force_resync() -> dict:
    return _run_pass("force_resync", lambda r: r.force_resync())


@celery_app.task(name="venuebook.worker.sweep_cancelled")
def sweep_cancelled() -> dict:
    return _run_pass("sweep_cancelled", lambda r: r.sweep_cancelled())
