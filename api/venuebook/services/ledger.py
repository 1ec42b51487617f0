"""Balance ledger for prepaid points.

The running balance lives on BalanceAccount; BalanceTransaction is the
append-only audit trail. All mutations go through this module.

Every mutation is a single conditional UPDATE (balance = balance - :amount
WHERE balance >= :amount), so concurrent spends against one account are
linearized by the database and a debit that would overdraw fails closed.
Each movement carries a reference ("reservation:12", "group:<uuid>", ...);
(reference, direction) is unique, so replaying a debit or refund for the same
thing returns the original transaction instead of moving points twice.

The functions never commit. Callers own the transaction boundary.
"""

import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.models.balance import BalanceAccount, BalanceTransaction, TransactionDirection, TransactionType
from venuebook.services.errors import InsufficientBalanceError

logger = logging.getLogger(__name__)


def reservation_reference(reservation_id: int) -> str:
    return f"reservation:{reservation_id}"


def group_reference(group_id: str) -> str:
    return f"group:{group_id}"


def payment_reference(payment_intent_id: str) -> str:
    return f"payment:{payment_intent_id}"


def grant_reference() -> str:
    return f"grant:{uuid.uuid4()}"


async def get_account(db: AsyncSession, user_id: int) -> BalanceAccount | None:
    result = await db.execute(select(BalanceAccount).where(BalanceAccount.user_id == user_id))
    return result.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, user_id: int) -> BalanceAccount:
    """Fetch the user's account, opening an empty one on first use."""
    account = await get_account(db, user_id)
    if account is not None:
        return account

    try:
        async with db.begin_nested():
            account = BalanceAccount(user_id=user_id, balance=0, total_recharged=0, total_spent=0)
            db.add(account)
    except IntegrityError:
        # Opened concurrently by another request
        account = await get_account(db, user_id)
    return account


async def get_balance(db: AsyncSession, user_id: int) -> int:
    """Current balance in points (0 for users without an account)."""
    result = await db.execute(select(BalanceAccount.balance).where(BalanceAccount.user_id == user_id))
    return result.scalar_one_or_none() or 0


async def find_transaction(
    db: AsyncSession, reference: str, direction: TransactionDirection
) -> BalanceTransaction | None:
    result = await db.execute(
        select(BalanceTransaction).where(
            BalanceTransaction.reference == reference,
            BalanceTransaction.direction == direction,
        )
    )
    return result.scalar_one_or_none()


async def _record(
    db: AsyncSession,
    account: BalanceAccount,
    direction: TransactionDirection,
    txn_type: TransactionType,
    amount: int,
    balance_after: int,
    description: str,
    reference: str,
    reservation_id: int | None,
) -> BalanceTransaction:
    # Pull the post-update totals into the identity map
    await db.refresh(account)

    txn = BalanceTransaction(
        account_id=account.id,
        direction=direction,
        transaction_type=txn_type,
        amount=amount,
        balance_after=balance_after,
        description=description,
        reference=reference,
        reservation_id=reservation_id,
    )
    db.add(txn)
    await db.flush()
    return txn


async def debit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    description: str,
    reference: str,
    reservation_id: int | None = None,
    txn_type: TransactionType = TransactionType.SPEND,
) -> BalanceTransaction:
    """Take `amount` points from the user's balance.

    Raises InsufficientBalanceError (leaving the balance untouched) when the
    balance is lower than `amount`. A repeated call with the same reference
    returns the original debit.
    """
    if amount <= 0:
        raise ValueError("Debit amount must be positive")

    existing = await find_transaction(db, reference, TransactionDirection.DEBIT)
    if existing is not None:
        logger.info("Debit %s already applied, returning transaction %s", reference, existing.id)
        return existing

    account = await get_or_create_account(db, user_id)
    result = await db.execute(
        update(BalanceAccount)
        .where(BalanceAccount.id == account.id, BalanceAccount.balance >= amount)
        .values(
            balance=BalanceAccount.balance - amount,
            total_spent=BalanceAccount.total_spent + amount,
        )
        .returning(BalanceAccount.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one_or_none()
    if new_balance is None:
        available = await get_balance(db, user_id)
        raise InsufficientBalanceError(required=amount, available=available)

    return await _record(
        db, account, TransactionDirection.DEBIT, txn_type, amount, new_balance, description, reference, reservation_id
    )


async def credit(
    db: AsyncSession,
    user_id: int,
    amount: int,
    description: str,
    reference: str,
    reservation_id: int | None = None,
    txn_type: TransactionType = TransactionType.REFUND,
) -> BalanceTransaction:
    """Add `amount` points to the user's balance.

    Refunds reduce total_spent; recharges raise total_recharged. A repeated
    call with the same reference returns the original credit.
    """
    if amount <= 0:
        raise ValueError("Credit amount must be positive")

    existing = await find_transaction(db, reference, TransactionDirection.CREDIT)
    if existing is not None:
        logger.info("Credit %s already applied, returning transaction %s", reference, existing.id)
        return existing

    values = {"balance": BalanceAccount.balance + amount}
    if txn_type == TransactionType.RECHARGE:
        values["total_recharged"] = BalanceAccount.total_recharged + amount
    elif txn_type == TransactionType.REFUND:
        values["total_spent"] = BalanceAccount.total_spent - amount

    account = await get_or_create_account(db, user_id)
    result = await db.execute(
        update(BalanceAccount)
        .where(BalanceAccount.id == account.id)
        .values(**values)
        .returning(BalanceAccount.balance)
        .execution_options(synchronize_session=False)
    )
    new_balance = result.scalar_one()

    return await _record(
        db, account, TransactionDirection.CREDIT, txn_type, amount, new_balance, description, reference, reservation_id
    )


async def list_transactions(db: AsyncSession, user_id: int, limit: int = 50) -> list[BalanceTransaction]:
    """Most recent movements first."""
    result = await db.execute(
        select(BalanceTransaction)
        .join(BalanceAccount, BalanceTransaction.account_id == BalanceAccount.id)
        .where(BalanceAccount.user_id == user_id)
        .order_by(BalanceTransaction.created_at.desc(), BalanceTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
