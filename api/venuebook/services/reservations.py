"""Reservation manager: single and full-venue booking, cancellation, operator updates.

Lifecycle: pending -> confirmed -> {completed | cancelled | no_show}.

Booking runs as one database transaction per operation, under a per-court lease
held from the conflict check until the commit:

    lease courts -> lock court rows -> rules -> conflict check -> price
    -> insert pending -> debit -> confirm -> commit

Any failure rolls the whole transaction back, so a debit never exists without
its reservation(s) and vice versa. A full-venue booking writes one
ReservationGroup, its line items and one aggregate debit in the same
transaction. The partial unique index on reservations is the storage-level
backstop: an IntegrityError at flush is reported as a ConflictError.

Cancellation refunds the points before the status change is committed, in the
same transaction; a refund that fails aborts the cancellation.

Notifications and access grants run after commit and never fail a booking.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import date, datetime, time

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from venuebook.core.config import Settings, settings
from venuebook.models.base import utcnow
from venuebook.models.court import Court
from venuebook.models.member import User, UserRole
from venuebook.models.reservation import (
    BLOCKING_STATUSES,
    CancelledBy,
    Reservation,
    ReservationGroup,
    ReservationStatus,
)
from venuebook.services import ledger, sync_state
from venuebook.services.access import AccessGranter, Visitor
from venuebook.services.booking_rules import (
    calc_end_time,
    check_cancellation_cutoff,
    conflicting_courts,
    find_conflict,
    fmt_time,
    local_now,
    validate_reservation,
)
from venuebook.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ReservationRejected,
    ReservationViolation,
)
from venuebook.services.leases import CourtLeases
from venuebook.services.notifications import Notification, NotificationType, Notifier, NullNotifier
from venuebook.services.pricing import PricingCalculator, PricingSnapshot, load_weekend_policy

logger = logging.getLogger(__name__)

# Operator transitions after the booking took place
OPERATOR_TRANSITIONS = {
    ReservationStatus.CONFIRMED: {ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW},
}


def _slot(start_time: time, end_time: time) -> str:
    return f"{fmt_time(start_time)}-{fmt_time(end_time)}"


class ReservationManager:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        leases: CourtLeases | None = None,
        notifier: Notifier | None = None,
        access_granter: AccessGranter | None = None,
        config: Settings = settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.leases = leases or CourtLeases()
        self.notifier = notifier or NullNotifier()
        self.access_granter = access_granter
        self.config = config
        self._clock = clock

    # --- helpers ---

    def now_local(self) -> datetime:
        return local_now(self._clock(), self.config.timezone)

    def _end_time(self, start_time: time, duration_minutes: int) -> time:
        try:
            return calc_end_time(start_time, duration_minutes)
        except ValueError as e:
            raise ReservationRejected([ReservationViolation("interval", str(e))]) from e

    async def _load_user(self, db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None or not user.is_active:
            raise NotFoundError(f"User {user_id} not found.")
        return user

    async def _lock_courts(self, db: AsyncSession, court_ids: list[int]) -> list[Court]:
        """Load and row-lock the courts (no-op lock on SQLite), ordered by id."""
        result = await db.execute(select(Court).where(Court.id.in_(court_ids)).order_by(Court.id).with_for_update())
        courts = list(result.scalars().all())
        missing = set(court_ids) - {c.id for c in courts}
        if missing:
            raise NotFoundError(f"Court {sorted(missing)[0]} not found.")
        return courts

    async def _calculator(self, db: AsyncSession) -> PricingCalculator:
        policy = await load_weekend_policy(db, self.config.weekend_days)
        return PricingCalculator(policy, {"peak_start": self.config.peak_start, "peak_end": self.config.peak_end})

    def discount_percent(self, user: User) -> int:
        return self.config.vip_discount_percent if user.role == UserRole.VIP else 0

    def _check_rules(self, user: User, courts: list[Court], booking_date: date, start_time: time, duration_minutes: int, participants: int) -> None:
        violations = validate_reservation(
            user, courts, booking_date, start_time, duration_minutes, participants, self.now_local(), self.config
        )
        if violations:
            raise ReservationRejected(violations)

    async def resolve_full_venue_courts(self, db: AsyncSession, court_types: list[str]) -> list[Court]:
        """First active court (by sort order) of each required type."""
        courts = []
        for court_type in court_types:
            result = await db.execute(
                select(Court)
                .where(Court.court_type == court_type, Court.is_active.is_(True))
                .order_by(Court.sort_order, Court.id)
                .limit(1)
            )
            court = result.scalar_one_or_none()
            if court is None:
                raise NotFoundError(f"No active {court_type} court for a full-venue booking.")
            courts.append(court)
        return courts

    # --- single court ---

    async def reserve_single(
        self,
        user_id: int,
        court_id: int,
        booking_date: date,
        start_time: time,
        duration_minutes: int,
        participants: int = 1,
        notes: str | None = None,
    ) -> Reservation:
        """Book one court and settle it against the user's points balance."""
        end_time = self._end_time(start_time, duration_minutes)

        async with self.leases.hold([court_id]):
            try:
                async with self.session_factory() as db, db.begin():
                    (court,) = await self._lock_courts(db, [court_id])
                    user = await self._load_user(db, user_id)
                    self._check_rules(user, [court], booking_date, start_time, duration_minutes, participants)

                    conflict = await find_conflict(db, court.id, booking_date, start_time, end_time)
                    if conflict:
                        raise ConflictError(
                            f"{court.name} is already booked from {_slot(conflict.start_time, conflict.end_time)}."
                        )

                    calculator = await self._calculator(db)
                    snapshot = calculator.quote(court, booking_date, start_time, duration_minutes, self.discount_percent(user))

                    reservation = Reservation(
                        court=court,
                        user=user,
                        booking_date=booking_date,
                        start_time=start_time,
                        end_time=end_time,
                        duration_minutes=duration_minutes,
                        participants=participants,
                        status=ReservationStatus.PENDING,
                        base_price=snapshot.base_price,
                        discount=snapshot.discount,
                        final_price=snapshot.final_price,
                        slot_name=snapshot.slot_name,
                        notes=notes,
                        extra={},
                    )
                    db.add(reservation)
                    await db.flush()

                    if snapshot.final_price > 0:
                        await ledger.debit(
                            db,
                            user.id,
                            snapshot.final_price,
                            f"Reservation #{reservation.id}: {court.name} {booking_date} {_slot(start_time, end_time)}",
                            ledger.reservation_reference(reservation.id),
                            reservation_id=reservation.id,
                        )
                    reservation.points_deducted = snapshot.final_price
                    reservation.status = ReservationStatus.CONFIRMED
            except IntegrityError as e:
                raise ConflictError(f"Court {court_id} was booked concurrently for {booking_date} {_slot(start_time, end_time)}.") from e

        logger.info(
            "Reservation %s confirmed: user=%s court=%s %s %s points=%s",
            reservation.id,
            user_id,
            court_id,
            booking_date,
            _slot(start_time, end_time),
            reservation.points_deducted,
        )
        await self._notify(NotificationType.CONFIRMED, reservation, user)
        await self._grant_access([reservation], user)
        return reservation

    # --- full venue ---

    async def check_full_venue(
        self,
        user_id: int,
        booking_date: date,
        start_time: time,
        duration_minutes: int,
        court_types: list[str] | None = None,
    ) -> dict:
        """Availability pre-check and quote. Not a guarantee: reserve_full_venue re-checks under lease."""
        court_types = court_types or self.config.full_venue_court_types
        end_time = self._end_time(start_time, duration_minutes)

        async with self.session_factory() as db:
            user = await self._load_user(db, user_id)
            courts = await self.resolve_full_venue_courts(db, court_types)
            taken = await conflicting_courts(db, courts, booking_date, start_time, end_time)
            calculator = await self._calculator(db)
            quotes = [
                calculator.quote(c, booking_date, start_time, duration_minutes, self.discount_percent(user)) for c in courts
            ]

        return {
            "available": not taken,
            "courts": [{"id": c.id, "name": c.name, "court_type": c.court_type.value} for c in courts],
            "conflicting_courts": [c.name for c in taken],
            "total_points": sum(q.final_price for q in quotes),
            "capacity": sum(c.capacity for c in courts),
        }

    async def _write_line_item(
        self, db: AsyncSession, group: ReservationGroup, court: Court, snapshot: PricingSnapshot
    ) -> Reservation:
        line = group.add_line(
            court,
            base_price=snapshot.base_price,
            discount=snapshot.discount,
            final_price=snapshot.final_price,
            points_deducted=snapshot.final_price,
            slot_name=snapshot.slot_name,
            extra={},
        )
        await db.flush()
        return line

    async def reserve_full_venue(
        self,
        user_id: int,
        booking_date: date,
        start_time: time,
        duration_minutes: int,
        participants: int,
        court_types: list[str] | None = None,
        notes: str | None = None,
    ) -> ReservationGroup:
        """Book one court of each required type together, settled by one aggregate debit.

        All line items and the debit commit together or not at all.
        """
        court_types = court_types or self.config.full_venue_court_types
        end_time = self._end_time(start_time, duration_minutes)

        async with self.session_factory() as db:
            court_ids = [c.id for c in await self.resolve_full_venue_courts(db, court_types)]

        async with self.leases.hold(court_ids):
            try:
                async with self.session_factory() as db, db.begin():
                    courts = await self._lock_courts(db, court_ids)
                    user = await self._load_user(db, user_id)
                    self._check_rules(user, courts, booking_date, start_time, duration_minutes, participants)

                    taken = await conflicting_courts(db, courts, booking_date, start_time, end_time)
                    if taken:
                        names = ", ".join(c.name for c in taken)
                        raise ConflictError(
                            f"Full venue unavailable on {booking_date} {_slot(start_time, end_time)}: {names} already booked."
                        )

                    calculator = await self._calculator(db)
                    discount = self.discount_percent(user)
                    quotes = [
                        (court, calculator.quote(court, booking_date, start_time, duration_minutes, discount))
                        for court in courts
                    ]
                    total = sum(snapshot.final_price for _, snapshot in quotes)

                    group = ReservationGroup(
                        id=str(uuid.uuid4()),
                        user_id=user.id,
                        booking_date=booking_date,
                        start_time=start_time,
                        end_time=end_time,
                        duration_minutes=duration_minutes,
                        participants=participants,
                        status=ReservationStatus.PENDING,
                        total_points=total,
                        reservations=[],
                    )
                    db.add(group)
                    await db.flush()

                    if total > 0:
                        await ledger.debit(
                            db,
                            user.id,
                            total,
                            f"Full venue {booking_date} {_slot(start_time, end_time)} ({len(courts)} courts)",
                            ledger.group_reference(group.id),
                        )
                    for court, snapshot in quotes:
                        line = await self._write_line_item(db, group, court, snapshot)
                        line.notes = notes
                    group.confirm()
            except IntegrityError as e:
                raise ConflictError(
                    f"Full venue was booked concurrently for {booking_date} {_slot(start_time, end_time)}."
                ) from e

        logger.info(
            "Full-venue group %s confirmed: user=%s %s %s courts=%s points=%s",
            group.id,
            user_id,
            booking_date,
            _slot(start_time, end_time),
            court_ids,
            group.total_points,
        )
        await self._notify(NotificationType.CONFIRMED, group.reservations[0], user, group)
        await self._grant_access(group.reservations, user)
        return group

    # --- cancellation ---

    async def cancel(self, reservation_id: int, actor_id: int, reason: str | None = None) -> Reservation:
        """Cancel a reservation (and its whole group), refunding the points it consumed.

        Users can only cancel their own reservations and only up to the cutoff
        before the start; admins can cancel any reservation at any time.
        """
        async with self.session_factory() as db, db.begin():
            actor = await self._load_user(db, actor_id)
            result = await db.execute(
                select(Reservation)
                .where(Reservation.id == reservation_id)
                .options(selectinload(Reservation.court))
                .with_for_update()
            )
            reservation = result.scalar_one_or_none()
            if reservation is None or (reservation.user_id != actor.id and not actor.is_admin):
                raise NotFoundError(f"Reservation {reservation_id} not found.")
            if reservation.status not in BLOCKING_STATUSES:
                raise InvalidStateError(f"Cannot cancel a {reservation.status.value} reservation.")
            if not actor.is_admin:
                violation = check_cancellation_cutoff(reservation, self.now_local(), self.config.cancellation_cutoff_hours)
                if violation:
                    raise violation

            group = None
            lines = [reservation]
            reference = ledger.reservation_reference(reservation.id)
            if reservation.group_id:
                result = await db.execute(
                    select(ReservationGroup)
                    .where(ReservationGroup.id == reservation.group_id)
                    .options(selectinload(ReservationGroup.reservations).selectinload(Reservation.court))
                    .with_for_update()
                )
                group = result.scalar_one()
                lines = [line for line in group.reservations if line.status in BLOCKING_STATUSES]
                reference = ledger.group_reference(group.id)

            # Refund first: if it fails nothing below is committed
            refund = sum(line.points_deducted for line in lines)
            if refund > 0:
                await ledger.credit(
                    db,
                    reservation.user_id,
                    refund,
                    f"Refund for cancelled {'full venue ' + group.id if group else f'reservation #{reservation.id}'}",
                    reference,
                    reservation_id=None if group else reservation.id,
                )

            now = self._clock()
            cancelled_by = CancelledBy.ADMIN if actor.is_admin else CancelledBy.USER
            for line in lines:
                line.status = ReservationStatus.CANCELLED
                line.cancelled_at = now
                line.cancelled_by = cancelled_by
                line.cancellation_reason = reason
                line.points_refunded = line.points_deducted
                sync_state.mark_dirty(line)
            if group is not None:
                group.status = ReservationStatus.CANCELLED

            owner = actor if actor.id == reservation.user_id else await db.get(User, reservation.user_id)

        logger.info(
            "Reservation %s cancelled by %s (%s): refunded %s points%s",
            reservation.id,
            actor_id,
            cancelled_by.value,
            refund,
            f" across group {group.id}" if group else "",
        )
        await self._notify(NotificationType.CANCELLED, reservation, owner, group)
        return reservation

    # --- operator ---

    async def update_status(self, reservation_id: int, new_status: ReservationStatus) -> Reservation:
        """Operator marks a confirmed reservation completed or no-show (the whole group for full venue)."""
        async with self.session_factory() as db, db.begin():
            result = await db.execute(select(Reservation).where(Reservation.id == reservation_id).with_for_update())
            reservation = result.scalar_one_or_none()
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found.")
            if new_status not in OPERATOR_TRANSITIONS.get(reservation.status, set()):
                raise InvalidStateError(
                    f"Cannot change a {reservation.status.value} reservation to {new_status.value}."
                )

            lines = [reservation]
            if reservation.group_id:
                group = await db.get(ReservationGroup, reservation.group_id, with_for_update=True)
                group.status = new_status
                result = await db.execute(
                    select(Reservation).where(
                        Reservation.group_id == group.id, Reservation.status == reservation.status
                    )
                )
                lines = list(result.scalars().all())

            for line in lines:
                line.status = new_status
                sync_state.mark_dirty(line)

        logger.info("Reservation %s marked %s", reservation_id, new_status.value)
        return reservation

    # --- post-commit collaborators ---

    async def _notify(
        self, kind: NotificationType, reservation: Reservation, user: User, group: ReservationGroup | None = None
    ) -> None:
        try:
            await self.notifier.notify(Notification(kind, reservation, user, reservation.court, group))
        except Exception:
            logger.exception("Could not send %s notification for reservation %s", kind, reservation.id)

    async def _grant_access(self, reservations: list[Reservation], user: User) -> None:
        if self.access_granter is None:
            return
        try:
            grant = await self.access_granter.issue_access(reservations[0], Visitor(user.name, user.email, user.phone))
            async with self.session_factory() as db, db.begin():
                for reservation in reservations:
                    row = await db.get(Reservation, reservation.id)
                    row.extra = {**(row.extra or {}), "access": grant.as_dict()}
                    reservation.extra = row.extra
        except Exception:
            logger.exception("Could not issue access for reservation %s", reservations[0].id)
