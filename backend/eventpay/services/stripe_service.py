"""Stripe Checkout integration for reservation payments"""
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict

import stripe

from eventpay.core.config import settings, CHECKOUT_SUCCESS_PATH, CHECKOUT_CANCEL_PATH
from eventpay.models import Event, Operation, Payment

logger = logging.getLogger(__name__)

# Configure Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


def to_cents(amount: Decimal) -> int:
    """Convert a decimal amount to integer minor units"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_checkout_session(event: Event, payment: Payment, operation: Operation) -> Dict[str, str]:
    """Create a hosted Stripe Checkout session for a pending reservation.

    Args:
        event: Event being booked
        payment: Pending payment (must already have an id)
        operation: Pending reservation (must already have an id)

    Returns:
        Dict with the session ``id`` and hosted ``url``

    Raises:
        stripe.StripeError: If the Stripe API call fails
    """
    if not settings.STRIPE_SECRET_KEY:
        raise ValueError("Stripe not configured")

    product_data = {"name": event.name}
    if event.description:
        product_data["description"] = event.description[:200]

    metadata = {
        "payment_id": str(payment.id),
        "operation_id": str(operation.id),
        "event_id": str(event.id),
        "user_id": str(operation.user_id),
    }

    session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        line_items=[{
            "price_data": {
                "currency": settings.CURRENCY,
                "product_data": product_data,
                "unit_amount": to_cents(event.base_price),
            },
            "quantity": operation.quantity,
        }],
        mode="payment",
        success_url=f"{settings.FRONTEND_URL}{CHECKOUT_SUCCESS_PATH}?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.FRONTEND_URL}{CHECKOUT_CANCEL_PATH}",
        client_reference_id=str(operation.id),
        metadata=metadata,
        payment_intent_data={"metadata": metadata},
    )
    logger.info(f"Created Stripe checkout session {session.id} for payment {payment.id}")
    return {"id": session.id, "url": session.url}


def expire_checkout_session(session_id: str) -> bool:
    """Expire an open checkout session so it can no longer be paid.

    Returns False (and logs) when Stripe refuses, e.g. the session is already complete.
    """
    if not settings.STRIPE_SECRET_KEY:
        logger.warning("Stripe not configured, skipping session expiry")
        return False

    try:
        stripe.checkout.Session.expire(session_id)
        logger.info(f"Expired Stripe checkout session {session_id}")
        return True
    except stripe.StripeError as e:
        logger.warning(f"Failed to expire Stripe checkout session {session_id}: {e}")
        return False


def verify_webhook_signature(payload: bytes, sig_header: str) -> None:
    """Verify a Stripe webhook signature.

    Raises:
        ValueError: If the webhook secret is not configured
        stripe.SignatureVerificationError: If the signature does not match
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise ValueError("Webhook secret not configured")

    stripe.WebhookSignature.verify_header(
        payload.decode("utf-8"),
        sig_header,
        settings.STRIPE_WEBHOOK_SECRET,
        stripe.Webhook.DEFAULT_TOLERANCE,
    )
