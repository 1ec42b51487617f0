"""Court routes: listing and per-day availability."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.config import settings
from venuebook.core.database import get_db
from venuebook.models.base import utcnow
from venuebook.models.court import Court
from venuebook.models.reservation import BLOCKING_STATUSES, Reservation
from venuebook.schemas import AvailabilityOut, CourtOut
from venuebook.services.availability import generate_slots
from venuebook.services.booking_rules import local_now

router = APIRouter(prefix="/courts", tags=["courts"])


@router.get("", response_model=list[CourtOut])
async def list_courts(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Court).where(Court.is_active.is_(True)).order_by(Court.sort_order, Court.number)
    )
    return result.scalars().all()


@router.get("/{court_id}/availability", response_model=AvailabilityOut)
async def court_availability(
    court_id: int,
    query_date: date = Query(alias="date"),
    db: AsyncSession = Depends(get_db),
):
    court = await db.get(Court, court_id)
    if court is None or not court.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Court not found")

    result = await db.execute(
        select(Reservation.start_time, Reservation.end_time).where(
            Reservation.court_id == court_id,
            Reservation.booking_date == query_date,
            Reservation.status.in_(BLOCKING_STATUSES),
        )
    )
    booked = [(row.start_time, row.end_time) for row in result.all()]

    slots = generate_slots(
        query_date,
        booked,
        now=local_now(utcnow(), settings.timezone),
        opening=settings.opening_time,
        closing=settings.closing_time,
    )
    if court.under_maintenance:
        for slot in slots:
            slot["is_available"] = False

    return AvailabilityOut(court_id=court.id, court_name=court.name, date=query_date, slots=slots)
