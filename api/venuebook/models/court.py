"""Court and holiday models.

Court = a bookable physical court with its own tariff.
Holiday = a date that takes holiday (or weekend) tariffs.
"""

import enum
from datetime import date
from typing import Any

from sqlalchemy import Boolean, Date, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from venuebook.models.base import Base, JSONType, TimestampMixin


class CourtType(enum.StrEnum):
    SOLO = "solo"
    TRAINING = "training"
    COMPETITION = "competition"
    INDOOR = "indoor"
    OUTDOOR = "outdoor"


class Court(TimestampMixin, Base):
    __tablename__ = "courts"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    number: Mapped[int] = mapped_column(unique=True, nullable=False)
    court_type: Mapped[CourtType] = mapped_column(
        Enum(CourtType, name="court_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    capacity: Mapped[int] = mapped_column(default=4, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    under_maintenance: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sort_order: Mapped[int] = mapped_column(default=0, nullable=False)

    # Tariff: {"weekday": [{"start": "07:00", "end": "16:00", "price": 60, "name": "day"}], "weekend": [...],
    # "holiday": [...]} or a bare list for every day. Prices are points per hour.
    tariff: Mapped[Any] = mapped_column(JSONType, default=dict, nullable=True)
    # Flat rates used when no tariff slot covers the start time
    peak_rate: Mapped[int | None] = mapped_column()
    off_peak_rate: Mapped[int | None] = mapped_column()

    __table_args__ = (Index("ix_courts_type_active", "court_type", "is_active"),)

    @property
    def is_bookable(self) -> bool:
        return self.is_active and not self.under_maintenance

    def __repr__(self) -> str:
        return f"<Court {self.number} {self.name} ({self.court_type})>"


class Holiday(TimestampMixin, Base):
    __tablename__ = "holidays"

    id: Mapped[int] = mapped_column(primary_key=True)
    holiday_date: Mapped[date] = mapped_column(Date, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100))

    def __repr__(self) -> str:
        return f"<Holiday {self.holiday_date}>"
