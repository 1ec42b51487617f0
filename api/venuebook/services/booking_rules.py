"""Booking rules enforcement and conflict detection.

All booking validation logic lives here, separate from the reservation manager
and the route handlers. Each rule returns a ReservationViolation or None if the
rule passes. validate_reservation() runs all rules and collects violations.

Times are facility wall-clock times: `now` is converted into the facility
timezone before it is compared with a booking date and start time.
"""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.config import Settings
from venuebook.models.court import Court
from venuebook.models.member import User
from venuebook.models.reservation import BLOCKING_STATUSES, Reservation
from venuebook.services.errors import ReservationViolation

# Stored end time of a booking that runs until midnight. TIME columns cannot
# hold 24:00.
END_OF_DAY = time.max


def _fmt_duration(minutes: int) -> str:
    """Format minutes as hours when evenly divisible by 60, otherwise minutes.

    120 -> "2 hours", 60 -> "1 hour", 90 -> "90 minutes", 0 -> "0 minutes"
    """
    if minutes == 0:
        return "0 minutes"
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minutes"


def local_now(now: datetime, tz: str) -> datetime:
    """Facility wall-clock time as a naive datetime."""
    return now.astimezone(ZoneInfo(tz)).replace(tzinfo=None)


def calc_end_time(start_time: time, duration_minutes: int) -> time:
    """Calculate end time from start time and duration.

    Reservations never cross midnight; ValueError otherwise. A booking ending
    exactly at midnight gets END_OF_DAY as its end time.
    """
    start_dt = datetime.combine(date.min, start_time)
    end_dt = start_dt + timedelta(minutes=duration_minutes)
    if duration_minutes > 0 and end_dt == datetime.combine(date.min + timedelta(days=1), time.min):
        return END_OF_DAY
    if end_dt.date() != date.min or duration_minutes <= 0:
        raise ValueError(f"A {_fmt_duration(duration_minutes)} booking from {start_time} must end the same day.")
    return end_dt.time()


def end_datetime(booking_date: date, end_time: time) -> datetime:
    """Wall-clock end of an interval, rolling END_OF_DAY over to the next midnight."""
    if end_time == END_OF_DAY:
        return datetime.combine(booking_date + timedelta(days=1), time.min)
    return datetime.combine(booking_date, end_time)


def fmt_time(t: time) -> str:
    """Format as HH:MM, showing END_OF_DAY as 24:00."""
    return "24:00" if t == END_OF_DAY else t.strftime("%H:%M")


# --- Conflict detection ---


def intervals_overlap(s1: time, e1: time, s2: time, e2: time) -> bool:
    """Half-open intervals [s1, e1) and [s2, e2) overlap iff s1 < e2 and s2 < e1."""
    return s1 < e2 and s2 < e1


async def find_conflict(
    db: AsyncSession,
    court_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    exclude_id: int | None = None,
) -> Reservation | None:
    """Return a blocking reservation overlapping [start_time, end_time), if any."""
    stmt = select(Reservation).where(
        Reservation.court_id == court_id,
        Reservation.booking_date == booking_date,
        Reservation.status.in_(BLOCKING_STATUSES),
        Reservation.start_time < end_time,
        Reservation.end_time > start_time,
    )
    if exclude_id is not None:
        stmt = stmt.where(Reservation.id != exclude_id)
    result = await db.execute(stmt.limit(1))
    return result.scalar_one_or_none()


async def has_conflict(
    db: AsyncSession, court_id: int, booking_date: date, start_time: time, end_time: time
) -> bool:
    return await find_conflict(db, court_id, booking_date, start_time, end_time) is not None


async def conflicting_courts(
    db: AsyncSession, courts: Iterable[Court], booking_date: date, start_time: time, end_time: time
) -> list[Court]:
    """Courts among `courts` that are already held for an overlapping interval."""
    taken = []
    for court in courts:
        if await has_conflict(db, court.id, booking_date, start_time, end_time):
            taken.append(court)
    return taken


# --- Rules ---


def check_duration(duration_minutes: int, config: Settings) -> ReservationViolation | None:
    """Duration must fall inside the configured min/max."""
    if not config.min_duration_minutes <= duration_minutes <= config.max_duration_minutes:
        return ReservationViolation(
            "duration",
            f"Duration {_fmt_duration(duration_minutes)} not allowed. "
            f"Bookings run from {_fmt_duration(config.min_duration_minutes)} "
            f"to {_fmt_duration(config.max_duration_minutes)}.",
        )
    return None


def check_not_in_past(booking_date: date, start_time: time, now: datetime) -> ReservationViolation | None:
    """Cannot book a slot that has already started. `now` is facility wall-clock time."""
    if datetime.combine(booking_date, start_time) <= now:
        return ReservationViolation("past_booking", "Cannot book a slot in the past.")
    return None


def check_advance_window(user: User, booking_date: date, now: datetime, config: Settings) -> ReservationViolation | None:
    """Booking must be within the role's advance window."""
    days = config.max_advance_days_by_role.get(user.role.value, config.max_advance_days_by_role.get("member", 7))
    max_date = now.date() + timedelta(days=days)
    if booking_date > max_date:
        return ReservationViolation(
            "advance_window",
            f"Cannot book more than {days} days in advance (latest date: {max_date}).",
        )
    return None


def check_participants(participants: int, capacity: int) -> ReservationViolation | None:
    if participants < 1:
        return ReservationViolation("participants", "At least one participant is required.")
    if participants > capacity:
        return ReservationViolation(
            "capacity", f"{participants} participants exceed the capacity of {capacity}."
        )
    return None


def check_court_bookable(court: Court) -> ReservationViolation | None:
    if not court.is_active:
        return ReservationViolation("court_inactive", f"{court.name} is not available for booking.")
    if court.under_maintenance:
        return ReservationViolation("court_maintenance", f"{court.name} is under maintenance.")
    return None


def validate_reservation(
    user: User,
    courts: list[Court],
    booking_date: date,
    start_time: time,
    duration_minutes: int,
    participants: int,
    now: datetime,
    config: Settings,
) -> list[ReservationViolation]:
    """Run all booking rules and return a list of violations (empty = valid).

    `courts` is one court for a single booking or every court of a full-venue
    booking; capacity is checked against their combined capacity. Admins are
    exempt from every rule here. Conflicts and balance are checked separately.
    """
    if user.is_admin:
        return []

    checks = [
        check_duration(duration_minutes, config),
        check_not_in_past(booking_date, start_time, now),
        check_advance_window(user, booking_date, now, config),
        check_participants(participants, sum(c.capacity for c in courts)),
        *(check_court_bookable(c) for c in courts),
    ]
    return [v for v in checks if v]


def check_cancellation_cutoff(reservation: Reservation, now: datetime, cutoff_hours: int) -> ReservationViolation | None:
    """Users may cancel only up to `cutoff_hours` before the start."""
    slot_start = datetime.combine(reservation.booking_date, reservation.start_time)
    deadline = slot_start - timedelta(hours=cutoff_hours)

    if now > deadline:
        return ReservationViolation(
            "cancellation_deadline",
            f"Cancellation deadline was {cutoff_hours} hours before the booking "
            f"({deadline.strftime('%A %d %B at %H:%M')}). Too late to cancel.",
        )
    return None
