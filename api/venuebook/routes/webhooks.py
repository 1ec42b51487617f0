"""Stripe webhook handler.

Credits points when a top-up PaymentIntent succeeds. The PaymentIntent id is
the ledger reference, so Stripe retrying the same event credits only once.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from venuebook.core.database import async_session_factory
from venuebook.models.balance import TransactionType
from venuebook.services import ledger
from venuebook.services.stripe_service import RECHARGE_PURPOSE, construct_webhook_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Uses a dedicated DB session (not the request-scoped one) because webhook
    processing must commit independently of any ongoing request.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    try:
        event = construct_webhook_event(payload, sig_header)
    except Exception:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature") from None

    event_type = event["type"]
    data = event["data"]["object"]

    if event_type == "payment_intent.succeeded":
        await _handle_payment_succeeded(data)
    elif event_type == "payment_intent.payment_failed":
        logger.info("Top-up payment %s failed", data["id"])

    return {"status": "ok"}


async def _handle_payment_succeeded(payment_intent: dict) -> None:
    """Credit the points bought by a top-up."""
    metadata = payment_intent.get("metadata") or {}
    if metadata.get("purpose") != RECHARGE_PURPOSE:
        return  # Not a top-up, ignore

    user_id = int(metadata["user_id"])
    points = int(metadata["points"])

    async with async_session_factory() as db:
        await ledger.credit(
            db,
            user_id,
            points,
            f"Top-up of {points} points",
            ledger.payment_reference(payment_intent["id"]),
            txn_type=TransactionType.RECHARGE,
        )
        await db.commit()
    logger.info("Credited %s points to user %s for payment %s", points, user_id, payment_intent["id"])
