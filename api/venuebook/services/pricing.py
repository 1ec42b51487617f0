"""Pricing service for reservation cost calculation.

Selects the tariff slot whose time range contains the start time, using the
weekday/weekend/holiday variant of the court's tariff for the booking date.
Falls back to flat peak/off-peak rates when no slot matches. Prices are points
per hour; the cost scales linearly with duration.

Pure calculation module: the weekend/holiday decision is delegated to a
WeekendPolicy built once per request from the holidays table.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.models.court import Court, Holiday
from venuebook.services.errors import PricingError

DAY_WEEKDAY = "weekday"
DAY_WEEKEND = "weekend"
DAY_HOLIDAY = "holiday"

SLOT_PEAK = "peak"
SLOT_OFFPEAK = "offpeak"

# Tariff variant lookup order per kind of day
_VARIANT_FALLBACK = {
    DAY_HOLIDAY: (DAY_HOLIDAY, DAY_WEEKEND, DAY_WEEKDAY),
    DAY_WEEKEND: (DAY_WEEKEND, DAY_WEEKDAY),
    DAY_WEEKDAY: (DAY_WEEKDAY,),
}

DEFAULTS = {
    "peak_start": "18:00",
    "peak_end": "23:00",
}


def _to_minutes(s: str) -> int:
    """Parse "HH:MM" into minutes after midnight. "24:00" is allowed as an end bound."""
    h, m = map(int, s.split(":"))
    minutes = h * 60 + m
    if not 0 <= minutes <= 24 * 60:
        raise ValueError(f"Time out of range: {s}")
    return minutes


def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


class WeekendPolicy:
    """Decides whether a date takes weekend (or holiday) tariffs."""

    def __init__(self, weekend_days: Iterable[int] = (5, 6), holidays: Iterable[date] = ()):
        self.weekend_days = frozenset(weekend_days)
        self.holidays = frozenset(holidays)

    def is_holiday(self, d: date) -> bool:
        return d in self.holidays

    def is_weekend(self, d: date) -> bool:
        return self.is_holiday(d) or d.weekday() in self.weekend_days

    def day_kind(self, d: date) -> str:
        if self.is_holiday(d):
            return DAY_HOLIDAY
        if d.weekday() in self.weekend_days:
            return DAY_WEEKEND
        return DAY_WEEKDAY


async def load_weekend_policy(db: AsyncSession, weekend_days: Iterable[int]) -> WeekendPolicy:
    result = await db.execute(select(Holiday.holiday_date))
    return WeekendPolicy(weekend_days, result.scalars().all())


@dataclass(frozen=True)
class TariffSlot:
    start: int  # minutes after midnight, inclusive
    end: int  # minutes after midnight, exclusive
    price: int
    name: str

    def contains(self, start_time: time) -> bool:
        return self.start <= _minutes(start_time) < self.end


@dataclass(frozen=True)
class PricingSnapshot:
    rate: int  # points per hour
    base_price: int
    discount: int
    final_price: int
    slot_name: str


def parse_slots(raw: list[dict] | None) -> list[TariffSlot]:
    slots = []
    for entry in raw or []:
        start, end = _to_minutes(entry["start"]), _to_minutes(entry["end"])
        if end <= start:
            raise ValueError(f"Tariff slot {entry['start']}-{entry['end']} is empty")
        slots.append(TariffSlot(start, end, int(entry["price"]), entry.get("name") or f"{entry['start']}-{entry['end']}"))
    return sorted(slots, key=lambda s: s.start)


def tariff_slots(tariff: dict | list | None, day_kind: str) -> list[TariffSlot]:
    """Return the slots that apply on a kind of day.

    A bare list applies to every day. A dict is keyed by variant; a missing
    holiday variant falls back to weekend, and weekend falls back to weekday.
    """
    if not tariff:
        return []
    if isinstance(tariff, list):
        return parse_slots(tariff)
    for variant in _VARIANT_FALLBACK[day_kind]:
        if tariff.get(variant):
            return parse_slots(tariff[variant])
    return []


def _is_peak_time(start_time: time, config: dict) -> bool:
    peak_start = _to_minutes(config.get("peak_start", DEFAULTS["peak_start"]))
    peak_end = _to_minutes(config.get("peak_end", DEFAULTS["peak_end"]))
    return peak_start <= _minutes(start_time) < peak_end


def select_rate(
    court: Court,
    booking_date: date,
    start_time: time,
    policy: WeekendPolicy,
    config: dict | None = None,
) -> tuple[int, str]:
    """Return (points per hour, slot name) for a booking starting at start_time."""
    for slot in tariff_slots(court.tariff, policy.day_kind(booking_date)):
        if slot.contains(start_time):
            return slot.price, slot.name

    # No slot matched: flat rates. Weekends and holidays are peak all day.
    if court.peak_rate is not None and court.off_peak_rate is not None:
        if policy.is_weekend(booking_date) or _is_peak_time(start_time, config or {}):
            return court.peak_rate, SLOT_PEAK
        return court.off_peak_rate, SLOT_OFFPEAK

    raise PricingError(f"No tariff covers {court.name} at {start_time.strftime('%H:%M')} on {booking_date}.")


def price_for(court: Court, booking_date: date, start_time: time, policy: WeekendPolicy) -> int:
    """Points per hour for this court at this date and start time."""
    rate, _ = select_rate(court, booking_date, start_time, policy)
    return rate


class PricingCalculator:
    """Prices reservations against court tariffs for a fixed weekend/holiday policy."""

    def __init__(self, policy: WeekendPolicy, config: dict | None = None):
        self.policy = policy
        self.config = config or {}

    def price_for(self, court: Court, booking_date: date, start_time: time) -> int:
        rate, _ = select_rate(court, booking_date, start_time, self.policy, self.config)
        return rate

    def quote(
        self,
        court: Court,
        booking_date: date,
        start_time: time,
        duration_minutes: int,
        discount_percent: int = 0,
    ) -> PricingSnapshot:
        """Price a booking. The rate at the start time applies to the whole duration."""
        rate, slot_name = select_rate(court, booking_date, start_time, self.policy, self.config)
        base = rate * duration_minutes // 60
        discount = base * discount_percent // 100
        return PricingSnapshot(
            rate=rate,
            base_price=base,
            discount=discount,
            final_price=base - discount,
            slot_name=slot_name,
        )
