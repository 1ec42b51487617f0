"""Reconciliation of committed reservations with the external calendar.

A pass pushes every confirmed reservation whose mirror is out of date to the
calendar, then runs the tombstone sweep that deletes the mirror of cancelled
reservations. Passes run unattended: a failing item is logged, marked failed
and retried on the next pass, and never aborts the batch. A run lock keeps two
passes from writing to the same external events at once.

Each item is committed on its own so a crash mid-pass keeps the progress made.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from venuebook.models.base import utcnow
from venuebook.models.reservation import Reservation, SyncStatus
from venuebook.services import sync_state
from venuebook.services.calendar_adapter import CalendarEvent, EventIds, ExternalCalendarAdapter
from venuebook.services.leases import RunLock

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
FAILED = "failed"


@dataclass
class SyncReport:
    created: int = 0
    updated: int = 0
    failed: int = 0
    deleted: int = 0
    delete_failed: int = 0
    skipped: bool = False

    def count(self, outcome: str) -> None:
        setattr(self, outcome, getattr(self, outcome) + 1)


class ReconciliationEngine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapter: ExternalCalendarAdapter,
        run_lock: RunLock,
        timezone: str = "Asia/Hong_Kong",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.adapter = adapter
        self.run_lock = run_lock
        self.timezone = timezone
        self._clock = clock

    def today(self) -> date:
        return self._clock().astimezone(ZoneInfo(self.timezone)).date()

    async def sync_one(self, db: AsyncSession, reservation: Reservation) -> str:
        """Push one reservation to the calendar. Never raises; returns the outcome.

        No stored event ids means create, otherwise update. Caller commits.
        """
        now = self._clock()
        try:
            sync_state.begin_attempt(reservation, now)
            event = CalendarEvent.from_reservation(reservation, self.timezone)
            ids = EventIds.of(reservation)
            if ids:
                new_ids = await self.adapter.update(ids, event)
                outcome = UPDATED
            else:
                new_ids = await self.adapter.create(event)
                outcome = CREATED
            sync_state.record_success(reservation, new_ids.public_event_id, new_ids.private_event_id, now)
            return outcome
        except Exception:
            logger.exception("Calendar sync failed for reservation %s", reservation.id)
            if reservation.sync_status == SyncStatus.PENDING:
                sync_state.record_failure(reservation, now)
            return FAILED

    async def _sync_window(self, report: SyncReport, start: date | None, end: date | None, force: bool) -> None:
        async with self.session_factory() as db:
            reservations = await sync_state.select_pending_or_failed(db, start, end, force=force)
            logger.info("Calendar sync: %d reservations to push (%s..%s, force=%s)", len(reservations), start, end, force)
            for reservation in reservations:
                report.count(await self.sync_one(db, reservation))
                await db.commit()

    async def _sweep(self, report: SyncReport) -> None:
        async with self.session_factory() as db:
            for reservation in await sync_state.select_cancelled_with_events(db):
                now = self._clock()
                sync_state.begin_attempt(reservation, now)
                try:
                    deleted = await self.adapter.delete(EventIds.of(reservation))
                except Exception:
                    logger.exception("Calendar delete failed for cancelled reservation %s", reservation.id)
                    deleted = False

                if deleted:
                    sync_state.clear_external_ids(reservation, now)
                    report.deleted += 1
                else:
                    # Ids stay so the next sweep retries the delete
                    sync_state.record_failure(reservation, now)
                    report.delete_failed += 1
                await db.commit()

    async def run_pass(
        self, start: date | None = None, end: date | None = None, force: bool = False, sweep: bool = True
    ) -> SyncReport:
        """One guarded pass: push the window, then sweep cancelled reservations."""
        token = await self.run_lock.acquire()
        if token is None:
            logger.info("Calendar reconciliation already running, skipping pass")
            return SyncReport(skipped=True)

        report = SyncReport()
        try:
            await self._sync_window(report, start, end, force)
            if sweep:
                await self._sweep(report)
        finally:
            await self.run_lock.release(token)

        logger.info(
            "Calendar reconciliation done: %d created, %d updated, %d failed, %d deleted, %d deletes failed",
            report.created,
            report.updated,
            report.failed,
            report.deleted,
            report.delete_failed,
        )
        return report

    async def sweep_cancelled(self) -> SyncReport:
        """Guarded tombstone sweep on its own."""
        token = await self.run_lock.acquire()
        if token is None:
            logger.info("Calendar reconciliation already running, skipping sweep")
            return SyncReport(skipped=True)
        report = SyncReport()
        try:
            await self._sweep(report)
        finally:
            await self.run_lock.release(token)
        logger.info("Tombstone sweep done: %d deleted, %d failed", report.deleted, report.delete_failed)
        return report

    async def sync_today(self) -> SyncReport:
        """Short-interval pass over today's reservations."""
        today = self.today()
        return await self.run_pass(today, today)

    async def sync_month(self) -> SyncReport:
        """Nightly pass from the start of the current month to 31 days ahead."""
        today = self.today()
        return await self.run_pass(today.replace(day=1), today + timedelta(days=31))

    async def force_resync(self) -> SyncReport:
        """On-demand pass rewriting every confirmed reservation, whatever its sync status."""
        return await self.run_pass(force=True)
