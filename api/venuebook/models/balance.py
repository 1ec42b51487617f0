"""Points balance models.

BalanceAccount holds the running totals; BalanceTransaction is the append-only
audit trail. All mutations go through services.ledger.
"""

import enum
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from venuebook.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from venuebook.models.member import User


class TransactionDirection(enum.StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionType(enum.StrEnum):
    RECHARGE = "recharge"
    SPEND = "spend"
    REFUND = "refund"
    GRANT = "grant"


class BalanceAccount(TimestampMixin, Base):
    __tablename__ = "balance_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True, nullable=False)
    balance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_recharged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_spent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    user: Mapped["User"] = relationship(lazy="raise")

    __table_args__ = (CheckConstraint("balance >= 0", name="ck_balance_non_negative"),)

    def __repr__(self) -> str:
        return f"<BalanceAccount user={self.user_id} balance={self.balance}>"


class BalanceTransaction(TimestampMixin, Base):
    """A single points movement. Amounts are always positive; direction carries the sign."""

    __tablename__ = "balance_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[int] = mapped_column(ForeignKey("balance_accounts.id"), nullable=False)
    direction: Mapped[TransactionDirection] = mapped_column(
        Enum(TransactionDirection, name="transaction_direction", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        Enum(TransactionType, name="balance_transaction_type", values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # What the movement settles: "reservation:<id>", "group:<uuid>", "payment:<pi>", "grant:<uuid>"
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    reservation_id: Mapped[int | None] = mapped_column(ForeignKey("reservations.id"))

    account: Mapped["BalanceAccount"] = relationship(lazy="raise")

    __table_args__ = (
        # A retried debit or refund for the same thing can never apply twice
        UniqueConstraint("reference", "direction", name="uq_balance_txn_reference_direction"),
        Index("ix_balance_txn_account", "account_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BalanceTransaction {self.direction.value} {self.amount} ref={self.reference}>"
