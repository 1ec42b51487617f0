"""Reservation routes: single and full-venue booking, listing, cancellation, operator updates.

Booking and cancellation go through the ReservationManager, which owns its
transactions; reads use the request-scoped session.
"""

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.database import get_db
from venuebook.core.dependencies import get_current_user, get_reservation_manager, require_admin
from venuebook.models.member import User
from venuebook.models.reservation import Reservation, ReservationStatus
from venuebook.schemas import (
    CancelRequest,
    FullVenueCheck,
    FullVenueCheckOut,
    FullVenueCreate,
    ReservationCreate,
    ReservationGroupOut,
    ReservationOut,
    StatusUpdate,
)
from venuebook.services.errors import (
    ConflictError,
    InsufficientBalanceError,
    InvalidStateError,
    NotFoundError,
    PricingError,
    ReservationError,
    ReservationRejected,
    ReservationViolation,
)
from venuebook.services.reservations import ReservationManager

router = APIRouter(prefix="/reservations", tags=["reservations"])


def http_error(exc: ReservationError) -> HTTPException:
    """Translate a booking error into the HTTP response the client sees."""
    if isinstance(exc, ReservationRejected):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"rule": v.rule, "message": v.message} for v in exc.violations],
        )
    if isinstance(exc, ReservationViolation):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"rule": exc.rule, "message": exc.message}],
        )
    if isinstance(exc, InsufficientBalanceError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail={"message": exc.message, "required": exc.required, "available": exc.available},
        )
    codes = {
        ConflictError: status.HTTP_409_CONFLICT,
        InvalidStateError: status.HTTP_409_CONFLICT,
        NotFoundError: status.HTTP_404_NOT_FOUND,
        PricingError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    }
    return HTTPException(status_code=codes.get(type(exc), status.HTTP_400_BAD_REQUEST), detail=exc.message)


@router.post("", response_model=ReservationOut, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    body: ReservationCreate,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        return await manager.reserve_single(
            user_id=user.id,
            court_id=body.court_id,
            booking_date=body.booking_date,
            start_time=body.start_time,
            duration_minutes=body.duration_minutes,
            participants=body.participants,
            notes=body.notes,
        )
    except ReservationError as e:
        raise http_error(e) from e


@router.post("/full-venue/check", response_model=FullVenueCheckOut)
async def check_full_venue(
    body: FullVenueCheck,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        return await manager.check_full_venue(user.id, body.booking_date, body.start_time, body.duration_minutes)
    except ReservationError as e:
        raise http_error(e) from e


@router.post("/full-venue", response_model=ReservationGroupOut, status_code=status.HTTP_201_CREATED)
async def create_full_venue_reservation(
    body: FullVenueCreate,
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        return await manager.reserve_full_venue(
            user_id=user.id,
            booking_date=body.booking_date,
            start_time=body.start_time,
            duration_minutes=body.duration_minutes,
            participants=body.participants,
            notes=body.notes,
        )
    except ReservationError as e:
        raise http_error(e) from e


@router.get("", response_model=list[ReservationOut])
async def list_my_reservations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Reservation)
        .where(Reservation.user_id == user.id)
        .order_by(Reservation.booking_date.desc(), Reservation.start_time.desc())
        .limit(50)
    )
    return result.scalars().all()


@router.get("/{reservation_id}", response_model=ReservationOut)
async def get_reservation(
    reservation_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    reservation = await db.get(Reservation, reservation_id)
    if reservation is None or (reservation.user_id != user.id and not user.is_admin):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reservation not found")
    return reservation


@router.delete("/{reservation_id}", response_model=ReservationOut)
async def cancel_reservation(
    reservation_id: int,
    body: CancelRequest | None = Body(default=None),
    user: User = Depends(get_current_user),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        return await manager.cancel(reservation_id, user.id, reason=body.reason if body else None)
    except ReservationError as e:
        raise http_error(e) from e


@router.put("/{reservation_id}/status", response_model=ReservationOut)
async def update_reservation_status(
    reservation_id: int,
    body: StatusUpdate,
    _admin: User = Depends(require_admin),
    manager: ReservationManager = Depends(get_reservation_manager),
):
    try:
        new_status = ReservationStatus(body.status)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Unknown status") from None

    try:
        return await manager.update_status(reservation_id, new_status)
    except ReservationError as e:
        raise http_error(e) from e
