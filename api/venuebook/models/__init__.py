"""All models imported here for metadata discovery."""

from venuebook.models.balance import BalanceAccount, BalanceTransaction, TransactionDirection, TransactionType
from venuebook.models.base import Base
from venuebook.models.court import Court, CourtType, Holiday
from venuebook.models.member import User, UserRole
from venuebook.models.reservation import (
    BLOCKING_STATUSES,
    CancelledBy,
    Reservation,
    ReservationGroup,
    ReservationStatus,
    SyncStatus,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Court",
    "CourtType",
    "Holiday",
    "BalanceAccount",
    "BalanceTransaction",
    "TransactionDirection",
    "TransactionType",
    "Reservation",
    "ReservationGroup",
    "ReservationStatus",
    "SyncStatus",
    "CancelledBy",
    "BLOCKING_STATUSES",
]
