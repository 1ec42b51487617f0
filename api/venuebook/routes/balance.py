"""Points balance routes: balance, history, top-up, operator grants."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from venuebook.core.config import settings
from venuebook.core.database import get_db
from venuebook.core.dependencies import get_current_user, require_admin
from venuebook.models.balance import TransactionType
from venuebook.models.member import User
from venuebook.schemas import BalanceOut, GrantRequest, RechargeOut, RechargeRequest, TransactionOut
from venuebook.services import ledger
from venuebook.services.stripe_service import create_recharge_intent, points_to_amount

router = APIRouter(tags=["balance"])


@router.get("/balance", response_model=BalanceOut)
async def get_balance(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    account = await ledger.get_account(db, user.id)
    if account is None:
        return BalanceOut(balance=0, total_recharged=0, total_spent=0)
    return account


@router.get("/balance/transactions", response_model=list[TransactionOut])
async def list_transactions(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ledger.list_transactions(db, user.id)


@router.post("/balance/recharge", response_model=RechargeOut, status_code=status.HTTP_201_CREATED)
async def recharge(
    body: RechargeRequest,
    user: User = Depends(get_current_user),
):
    """Start a points top-up. Points are credited by the Stripe webhook once the payment succeeds."""
    if not settings.stripe_secret_key:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Online top-up is not available")

    pi = create_recharge_intent(user, body.points)
    return RechargeOut(
        payment_intent_id=pi.id,
        client_secret=pi.client_secret,
        points=body.points,
        amount=points_to_amount(body.points),
        currency=settings.stripe_currency,
    )


@router.post("/admin/balance/{user_id}/grant", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def grant_points(
    user_id: int,
    body: GrantRequest,
    _admin: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    target = await db.get(User, user_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return await ledger.credit(
        db,
        user_id,
        body.points,
        body.description,
        ledger.grant_reference(),
        txn_type=TransactionType.GRANT,
    )
