"""Pydantic schemas for API serialisation."""

from datetime import date, datetime, time

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# --- User ---


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: EmailStr
    name: str
    phone: str | None
    role: str


# --- Court ---


class CourtOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    number: int
    court_type: str
    capacity: int
    is_active: bool
    under_maintenance: bool


# --- Reservation ---


class ReservationCreate(BaseModel):
    court_id: int
    booking_date: date
    start_time: time
    duration_minutes: int = 60
    participants: int = 1
    notes: str | None = None


class FullVenueCreate(BaseModel):
    booking_date: date
    start_time: time
    duration_minutes: int = 60
    participants: int = 1
    notes: str | None = None


class FullVenueCheck(BaseModel):
    booking_date: date
    start_time: time
    duration_minutes: int = 60


class FullVenueCheckOut(BaseModel):
    available: bool
    courts: list[dict]
    conflicting_courts: list[str]
    total_points: int
    capacity: int


class ReservationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    court_id: int
    user_id: int
    group_id: str | None
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    participants: int
    status: str
    base_price: int
    discount: int
    final_price: int
    points_deducted: int
    points_refunded: int
    slot_name: str | None
    sync_status: str
    cancelled_at: datetime | None
    cancellation_reason: str | None
    notes: str | None
    extra: dict | None
    created_at: datetime


class ReservationGroupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: int
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    participants: int
    status: str
    total_points: int
    reservations: list[ReservationOut]


class CancelRequest(BaseModel):
    reason: str | None = None


class StatusUpdate(BaseModel):
    status: str  # "completed" or "no_show"


# --- Availability ---


class SlotOut(BaseModel):
    start_time: str  # "HH:MM"
    end_time: str  # "HH:MM"
    is_available: bool


class AvailabilityOut(BaseModel):
    court_id: int
    court_name: str
    date: date
    slots: list[SlotOut]


# --- Balance ---


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    balance: int
    total_recharged: int
    total_spent: int


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    direction: str
    transaction_type: str
    amount: int
    balance_after: int
    description: str
    reference: str
    reservation_id: int | None
    created_at: datetime


class RechargeRequest(BaseModel):
    points: int = Field(gt=0, le=100_000)


class RechargeOut(BaseModel):
    payment_intent_id: str
    client_secret: str
    points: int
    amount: int
    currency: str


class GrantRequest(BaseModel):
    points: int = Field(gt=0)
    description: str = "Operator grant"


# --- Sync ---


class SyncStatsOut(BaseModel):
    pending: int
    synced: int
    failed: int
    total: int
