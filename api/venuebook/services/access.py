"""Venue access grants.

After a booking is confirmed the booker gets a door passcode valid from a short
lead time before the start until the end of the booking. Provisioning the code
on the door controller is the controller's business; this module only issues
and describes the grant.
"""

import secrets
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Protocol

from venuebook.models.reservation import Reservation
from venuebook.services.booking_rules import end_datetime


@dataclass(frozen=True)
class Visitor:
    name: str
    email: str
    phone: str | None = None


@dataclass(frozen=True)
class AccessGrant:
    valid_from: datetime
    valid_until: datetime
    password: str | None = None
    qr_image: str | None = None

    def as_dict(self) -> dict:
        data = asdict(self)
        data["valid_from"] = self.valid_from.isoformat()
        data["valid_until"] = self.valid_until.isoformat()
        return data


class AccessGranter(Protocol):
    async def issue_access(self, reservation: Reservation, visitor: Visitor) -> AccessGrant: ...


def access_window(reservation: Reservation, lead_minutes: int) -> tuple[datetime, datetime]:
    """[start - lead, end] in facility wall-clock time."""
    start = datetime.combine(reservation.booking_date, reservation.start_time)
    end = end_datetime(reservation.booking_date, reservation.end_time)
    return start - timedelta(minutes=lead_minutes), end


class PasscodeAccessGranter:
    """Issues a random numeric door passcode per reservation."""

    def __init__(self, lead_minutes: int = 15, digits: int = 6):
        self.lead_minutes = lead_minutes
        self.digits = digits

    async def issue_access(self, reservation: Reservation, visitor: Visitor) -> AccessGrant:
        valid_from, valid_until = access_window(reservation, self.lead_minutes)
        password = "".join(secrets.choice("0123456789") for _ in range(self.digits))
        return AccessGrant(valid_from=valid_from, valid_until=valid_until, password=password)
