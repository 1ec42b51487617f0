"""Per-reservation external calendar sync state.

Lifecycle of Reservation.sync_status:

    pending --(attempt ok)--> synced
    pending --(attempt fails)--> failed
    failed  --(next run)--> pending
    synced  --(reservation mutated)--> pending

failed never goes straight to synced: a retry re-enters pending first. Every
change to the sync fields goes through this module so an illegal move raises
SyncTransitionError instead of silently corrupting the record.
"""

from datetime import date, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from venuebook.models.reservation import Reservation, ReservationStatus, SyncStatus

ALLOWED_TRANSITIONS = {
    (SyncStatus.PENDING, SyncStatus.PENDING),
    (SyncStatus.PENDING, SyncStatus.SYNCED),
    (SyncStatus.PENDING, SyncStatus.FAILED),
    (SyncStatus.FAILED, SyncStatus.PENDING),
    (SyncStatus.SYNCED, SyncStatus.PENDING),
}


class SyncTransitionError(Exception):
    def __init__(self, current: SyncStatus, target: SyncStatus):
        self.current = current
        self.target = target
        super().__init__(f"Illegal sync transition {current.value} -> {target.value}")


def transition(reservation: Reservation, target: SyncStatus) -> None:
    current = reservation.sync_status
    if (current, target) not in ALLOWED_TRANSITIONS:
        raise SyncTransitionError(current, target)
    reservation.sync_status = target


def mark_dirty(reservation: Reservation) -> None:
    """The reservation changed; its calendar mirror must be rewritten (or deleted)."""
    transition(reservation, SyncStatus.PENDING)


def begin_attempt(reservation: Reservation, at: datetime) -> None:
    """Re-enter pending before talking to the calendar."""
    transition(reservation, SyncStatus.PENDING)
    reservation.last_sync_attempt_at = at


def record_success(
    reservation: Reservation, public_event_id: str | None, private_event_id: str | None, at: datetime
) -> None:
    transition(reservation, SyncStatus.SYNCED)
    reservation.external_public_event_id = public_event_id
    reservation.external_private_event_id = private_event_id
    reservation.last_sync_attempt_at = at


def record_failure(reservation: Reservation, at: datetime) -> None:
    """Mark the attempt failed. Any external ids already stored are kept for the retry."""
    transition(reservation, SyncStatus.FAILED)
    reservation.last_sync_attempt_at = at


def clear_external_ids(reservation: Reservation, at: datetime) -> None:
    """The external events are gone; reset the record."""
    transition(reservation, SyncStatus.PENDING)
    reservation.external_public_event_id = None
    reservation.external_private_event_id = None
    reservation.last_sync_attempt_at = at


# --- Queries ---


async def select_pending_or_failed(
    db: AsyncSession,
    start: date | None = None,
    end: date | None = None,
    force: bool = False,
) -> list[Reservation]:
    """Confirmed reservations whose mirror is not up to date, in an optional [start, end] date window.

    With force=True every confirmed reservation in the window is returned,
    whatever its sync status.
    """
    stmt = (
        select(Reservation)
        .where(Reservation.status == ReservationStatus.CONFIRMED)
        .options(selectinload(Reservation.court), selectinload(Reservation.user))
        .order_by(Reservation.booking_date, Reservation.start_time, Reservation.id)
    )
    if not force:
        stmt = stmt.where(Reservation.sync_status.in_((SyncStatus.PENDING, SyncStatus.FAILED)))
    if start is not None:
        stmt = stmt.where(Reservation.booking_date >= start)
    if end is not None:
        stmt = stmt.where(Reservation.booking_date <= end)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def select_cancelled_with_events(db: AsyncSession) -> list[Reservation]:
    """Cancelled reservations whose external events have not been deleted yet."""
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.status == ReservationStatus.CANCELLED,
            or_(
                Reservation.external_public_event_id.is_not(None),
                Reservation.external_private_event_id.is_not(None),
            ),
        )
        .order_by(Reservation.id)
    )
    return list(result.scalars().all())


async def sync_stats(db: AsyncSession) -> dict[str, int]:
    """Counts per sync status over every reservation."""
    result = await db.execute(
        select(Reservation.sync_status, func.count(Reservation.id)).group_by(Reservation.sync_status)
    )
    stats = {"pending": 0, "synced": 0, "failed": 0, "total": 0}
    for status, count in result.all():
        stats[SyncStatus(status).value] = count
        stats["total"] += count
    return stats
