"""Checkout initiator - creates the pending payment and reservation, then the provider checkout"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
import stripe

from eventpay.core.config import settings
from eventpay.core.errors import Err, Ok, ProviderError, Result, ValidationError
from eventpay.core.logging import payments_logger
from eventpay.core.metrics import checkouts_counter
from eventpay.db.store import PaymentStore
from eventpay.models import Event, Operation, OperationType, Payment, PaymentProvider, PaymentStatus
from eventpay.services import capacity, paypal_service, stripe_service
from eventpay.services.paypal_service import PayPalAPIError

logger = logging.getLogger(__name__)

PROVIDER_EXCEPTIONS = (stripe.StripeError, PayPalAPIError, httpx.HTTPError, ValueError)


@dataclass(frozen=True)
class CheckoutResult:
    provider: str
    reference: str
    redirect_url: Optional[str]
    payment_id: int
    operation_id: int
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    event: Dict[str, Any]


def event_summary(event: Event) -> Dict[str, Any]:
    return {
        "id": event.id,
        "name": event.name,
        "start_date": capacity.as_utc(event.start_date).isoformat(),
        "end_date": capacity.as_utc(event.end_date).isoformat(),
    }


def initiate_checkout(
    provider: str,
    user_id: int,
    event_id: int,
    quantity: int,
    store: PaymentStore,
    now: Optional[datetime] = None
) -> Result[CheckoutResult]:
    """Start a checkout for ``quantity`` places on an event.

    The pending payment and reservation are persisted together with the
    provider reference, or not at all. No capacity is taken here; that only
    happens when the provider confirms payment.

    Returns:
        Ok(CheckoutResult), or Err with ValidationError, CapacityError,
        TimingError or ProviderError
    """
    if provider not in (PaymentProvider.STRIPE.value, PaymentProvider.PAYPAL.value):
        return Err(ValidationError(f"Unsupported payment provider: {provider}"))

    if quantity < 1 or quantity > settings.MAX_TICKETS_PER_CHECKOUT:
        checkouts_counter.labels(provider=provider, outcome="rejected").inc()
        return Err(ValidationError(f"Quantity must be between 1 and {settings.MAX_TICKETS_PER_CHECKOUT}"))

    event = store.get_event(event_id)
    if not event:
        checkouts_counter.labels(provider=provider, outcome="rejected").inc()
        return Err(ValidationError("Event not found"))

    check = capacity.reserve(event, quantity, now)
    if isinstance(check, Err):
        checkouts_counter.labels(provider=provider, outcome="rejected").inc()
        payments_logger.info(
            f"Checkout rejected for user {user_id} on event {event_id} ({quantity} place(s)): {check.error}"
        )
        return check

    unit_price = Decimal(event.base_price)
    total = (unit_price * quantity).quantize(Decimal("0.01"))
    vendor = event.organizer
    summary = event_summary(event)

    payment = Payment(
        user_id=user_id,
        total=total,
        status=PaymentStatus.PENDING.value,
        provider=provider,
        commission_rate=vendor.commission_rate if vendor else 0,
        vendor_id=vendor.id if vendor else None,
    )
    operation = Operation(
        user_id=user_id,
        event_id=event.id,
        quantity=quantity,
        type=OperationType.RESERVATION.value,
    )

    try:
        store.add_pending_reservation(payment, operation)
        if provider == PaymentProvider.STRIPE.value:
            session = stripe_service.create_checkout_session(event, payment, operation)
            reference, redirect_url = session["id"], session["url"]
        else:
            order = paypal_service.create_order(event, payment)
            reference, redirect_url = order["id"], order["approve_url"]
        payment.provider_reference = reference
        payment_id, operation_id = payment.id, operation.id
        store.commit()
    except PROVIDER_EXCEPTIONS as e:
        store.rollback()
        logger.error(
            f"Checkout failed for user {user_id} on event {event_id} via {provider}: {e}",
            exc_info=True
        )
        checkouts_counter.labels(provider=provider, outcome="provider_error").inc()
        message = "Payment provider unavailable"
        if not settings.is_production:
            message = f"{message}: {e}"
        return Err(ProviderError(provider, message))
    except Exception:
        store.rollback()
        logger.error(f"Checkout failed for user {user_id} on event {event_id} via {provider}", exc_info=True)
        raise

    checkouts_counter.labels(provider=provider, outcome="created").inc()
    payments_logger.info(
        f"Checkout created for user {user_id}: payment {payment_id}, operation {operation_id}, "
        f"{provider} reference {reference}, {quantity} x {unit_price} = {total}"
    )
    return Ok(CheckoutResult(
        provider=provider,
        reference=reference,
        redirect_url=redirect_url,
        payment_id=payment_id,
        operation_id=operation_id,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=total,
        event=summary,
    ))
