"""Reservation notifications.

The booking core only says *what* happened (confirmed, cancelled); the notifier
decides how to tell the user. Email via SMTP is the default channel.
"""

import enum
import logging
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from venuebook.core.config import Settings
from venuebook.models.court import Court
from venuebook.models.member import User
from venuebook.models.reservation import Reservation, ReservationGroup
from venuebook.services.booking_rules import fmt_time

logger = logging.getLogger(__name__)


class NotificationType(enum.StrEnum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    reservation: Reservation
    user: User
    court: Court
    # Set for full-venue bookings; `reservation` is then the first line item
    group: ReservationGroup | None = None

    @property
    def venue(self) -> str:
        if self.group is None:
            return self.court.name
        return "the full venue (" + ", ".join(line.court.name for line in self.group.reservations) + ")"

    @property
    def points(self) -> tuple[int, int]:
        """(deducted, refunded) across the booking."""
        lines = self.group.reservations if self.group is not None else [self.reservation]
        return sum(r.points_deducted for r in lines), sum(r.points_refunded for r in lines)


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None: ...


class NullNotifier:
    """Drops every notification (notifications disabled)."""

    async def notify(self, notification: Notification) -> None:
        logger.debug("Notification %s for reservation %s dropped", notification.type, notification.reservation.id)


class EmailNotifier:
    def __init__(self, smtp_host: str, smtp_port: int, sender: str, app_name: str = "VenueBook"):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.sender = sender
        self.app_name = app_name

    def render(self, notification: Notification) -> EmailMessage:
        r = notification.reservation
        when = f"{r.booking_date:%A %d %B} {fmt_time(r.start_time)}-{fmt_time(r.end_time)}"
        deducted, refunded = notification.points
        if notification.type == NotificationType.CONFIRMED:
            subject = f"Booking confirmed: {when}"
            body = f"Your booking of {notification.venue} on {when} is confirmed. {deducted} points were deducted."
        else:
            subject = f"Booking cancelled: {when}"
            body = f"Your booking of {notification.venue} on {when} was cancelled. {refunded} points were refunded."

        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = notification.user.email
        message["Subject"] = subject
        message.set_content(f"Hi {notification.user.name},\n\n{body}\n\n{self.app_name}")
        return message

    async def notify(self, notification: Notification) -> None:
        await aiosmtplib.send(self.render(notification), hostname=self.smtp_host, port=self.smtp_port)
        logger.info("Sent %s email for reservation %s to %s", notification.type, notification.reservation.id, notification.user.email)


def build_notifier(config: Settings) -> Notifier:
    if not config.notifications_enabled:
        return NullNotifier()
    return EmailNotifier(config.smtp_host, config.smtp_port, config.smtp_from, config.app_name)
