"""Stripe integration for points top-ups.

Wraps the Stripe Python SDK. A recharge is a PaymentIntent whose metadata
carries the user and the points bought; the webhook credits the points once
the payment succeeds.
"""

import stripe

from venuebook.core.config import settings
from venuebook.models.member import User

RECHARGE_PURPOSE = "points_recharge"


def _configure() -> None:
    """Set the Stripe API key from settings."""
    stripe.api_key = settings.stripe_secret_key


def points_to_amount(points: int) -> int:
    """Smallest currency unit charged for `points`."""
    return points * settings.cents_per_point


def create_recharge_intent(user: User, points: int) -> stripe.PaymentIntent:
    """Create a PaymentIntent for buying `points`.

    Returns the PaymentIntent object (caller reads .id and .client_secret).
    """
    _configure()

    return stripe.PaymentIntent.create(
        amount=points_to_amount(points),
        currency=settings.stripe_currency,
        receipt_email=user.email,
        metadata={
            "purpose": RECHARGE_PURPOSE,
            "user_id": str(user.id),
            "points": str(points),
        },
        automatic_payment_methods={"enabled": True},
    )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event."""
    return stripe.Webhook.construct_event(
        payload,
        sig_header,
        settings.stripe_webhook_secret,
    )
