"""Reservation and reservation group models.

A reservation holds one court for a date and a [start, end) interval. It is the
core transactional entity: never deleted, only moved through its status
lifecycle. Each reservation also carries the sync record that mirrors it to the
external calendar.

A reservation group is the aggregate root of a full-venue booking: it owns the
line-item reservations (one per court), all sharing the date, interval and
participant count, and settled by one aggregate debit.
"""

import enum
import uuid
from datetime import date, datetime, time
from typing import TYPE_CHECKING

from sqlalchemy import Date, DateTime, Enum, ForeignKey, Index, Integer, String, Text, Time, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from venuebook.models.base import Base, JSONType, TimestampMixin

if TYPE_CHECKING:
    from venuebook.models.court import Court
    from venuebook.models.member import User


class ReservationStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Only these statuses hold a court
BLOCKING_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


class SyncStatus(enum.StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class CancelledBy(enum.StrEnum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"


def _enum(cls: type[enum.Enum], name: str) -> Enum:
    return Enum(cls, name=name, values_callable=lambda e: [x.value for x in e])


class ReservationGroup(TimestampMixin, Base):
    __tablename__ = "reservation_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    participants: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus, "reservation_status"), default=ReservationStatus.PENDING, nullable=False
    )
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    reservations: Mapped[list["Reservation"]] = relationship(back_populates="group", lazy="raise")

    def add_line(self, court: "Court", **pricing) -> "Reservation":
        """Create a line item for `court` sharing this group's date, interval and party size."""
        if self.status not in BLOCKING_STATUSES:
            raise ValueError(f"Cannot add a court to a {self.status.value} group")
        if any(line.court_id == court.id for line in self.reservations):
            raise ValueError(f"Court {court.id} is already part of group {self.id}")

        line = Reservation(
            court_id=court.id,
            court=court,
            user_id=self.user_id,
            group_id=self.id,
            booking_date=self.booking_date,
            start_time=self.start_time,
            end_time=self.end_time,
            duration_minutes=self.duration_minutes,
            participants=self.participants,
            status=ReservationStatus.PENDING,
            **pricing,
        )
        self.reservations.append(line)
        return line

    def confirm(self) -> None:
        """Confirm the group and every line item together."""
        if sum(line.points_deducted for line in self.reservations) != self.total_points:
            raise ValueError(f"Line items of group {self.id} do not add up to the aggregate debit")
        self.status = ReservationStatus.CONFIRMED
        for line in self.reservations:
            line.status = ReservationStatus.CONFIRMED

    def __repr__(self) -> str:
        return f"<ReservationGroup {self.id} {self.booking_date} {self.start_time}-{self.end_time}>"


class Reservation(TimestampMixin, Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    court_id: Mapped[int] = mapped_column(ForeignKey("courts.id"), nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    group_id: Mapped[str | None] = mapped_column(ForeignKey("reservation_groups.id"))

    # When
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(nullable=False)
    participants: Mapped[int] = mapped_column(nullable=False)

    # Status
    status: Mapped[ReservationStatus] = mapped_column(
        _enum(ReservationStatus, "reservation_status"), default=ReservationStatus.PENDING, nullable=False
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_by: Mapped[CancelledBy | None] = mapped_column(_enum(CancelledBy, "cancelled_by"))
    cancellation_reason: Mapped[str | None] = mapped_column(Text)

    # Pricing snapshot (points)
    base_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    discount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    final_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_deducted: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    points_refunded: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    slot_name: Mapped[str | None] = mapped_column(String(50))

    # External calendar sync record
    external_public_event_id: Mapped[str | None] = mapped_column(String(255))
    external_private_event_id: Mapped[str | None] = mapped_column(String(255))
    sync_status: Mapped[SyncStatus] = mapped_column(
        _enum(SyncStatus, "sync_status"), default=SyncStatus.PENDING, nullable=False
    )
    last_sync_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Metadata
    notes: Mapped[str | None] = mapped_column(Text)
    extra: Mapped[dict | None] = mapped_column(JSONType, default=dict)

    # Relationships
    court: Mapped["Court"] = relationship(lazy="raise")
    user: Mapped["User"] = relationship(lazy="raise")
    group: Mapped["ReservationGroup | None"] = relationship(back_populates="reservations", lazy="raise")

    __table_args__ = (
        # Backstop against double-booking: two blocking reservations can never
        # share a court, date and start time. Overlaps with different start times
        # are excluded by the per-court lease in services.reservations.
        Index(
            "ix_reservations_no_double",
            "court_id",
            "booking_date",
            "start_time",
            unique=True,
            postgresql_where=text("status IN ('pending', 'confirmed')"),
            sqlite_where=text("status IN ('pending', 'confirmed')"),
        ),
        Index("ix_reservations_court_date", "court_id", "booking_date"),
        Index("ix_reservations_user", "user_id", "booking_date"),
        Index("ix_reservations_sync", "status", "sync_status", "booking_date"),
    )

    def __repr__(self) -> str:
        return f"<Reservation {self.id} {self.booking_date} {self.start_time}-{self.end_time} court={self.court_id}>"
