"""Opening hours and hourly slot generation for court availability.

Pure calculation module: no database, no async, no FastAPI dependencies.
"""

from datetime import date, datetime, time, timedelta

from venuebook.services.booking_rules import END_OF_DAY, end_datetime, fmt_time, intervals_overlap

SLOT_MINUTES = 60


def _parse(s: str) -> time:
    """Parse "HH:MM". "24:00" is the end of the day."""
    if s == "24:00":
        return END_OF_DAY
    h, m = map(int, s.split(":"))
    return time(h, m)


def _wall_time(moment: datetime, query_date: date) -> time:
    return END_OF_DAY if moment.date() > query_date else moment.time()


def generate_slots(
    query_date: date,
    booked_intervals: list[tuple[time, time]],
    now: datetime,
    opening: str = "07:00",
    closing: str = "23:00",
) -> list[dict]:
    """Generate all 60-minute slots for a court on a given date.

    Returns a list of dicts with keys: start_time, end_time, is_available.
    Past slots and slots overlapping pending/confirmed reservations are marked
    unavailable. `now` is facility wall-clock time.
    """
    slots: list[dict] = []
    current = datetime.combine(query_date, _parse(opening))
    end_of_play = end_datetime(query_date, _parse(closing))

    while current + timedelta(minutes=SLOT_MINUTES) <= end_of_play:
        slot_start = current.time()
        slot_end = _wall_time(current + timedelta(minutes=SLOT_MINUTES), query_date)

        is_past = current <= now
        taken = any(intervals_overlap(slot_start, slot_end, b_start, b_end) for b_start, b_end in booked_intervals)

        slots.append(
            {
                "start_time": fmt_time(slot_start),
                "end_time": fmt_time(slot_end),
                "is_available": not is_past and not taken,
            }
        )
        current += timedelta(minutes=SLOT_MINUTES)

    return slots
