"""Payment status lookups for the checkout return pages"""
from typing import Any, Dict, Optional

from eventpay.core.errors import Err, NotFoundError, Ok, Result, ValidationError
from eventpay.db.store import PaymentStore
from eventpay.models import PaymentProvider
from eventpay.services import capacity
from eventpay.services.checkout_service import event_summary


def get_payment_status(
    user_id: int,
    store: PaymentStore,
    session_id: Optional[str] = None,
    order_id: Optional[str] = None,
    payment_id: Optional[int] = None
) -> Result[Dict[str, Any]]:
    """Look up one of the user's payments by Stripe session, PayPal order or payment id.

    Payments belonging to other users are reported as not found.
    """
    if session_id:
        payment = store.get_payment_by_reference(PaymentProvider.STRIPE.value, session_id)
    elif order_id:
        payment = store.get_payment_by_reference(PaymentProvider.PAYPAL.value, order_id)
    elif payment_id is not None:
        payment = store.get_payment(payment_id)
    else:
        return Err(ValidationError("One of session_id, order_id or payment_id is required"))

    if not payment or payment.user_id != user_id:
        return Err(NotFoundError("Payment not found"))

    operation = payment.operation
    event = operation.event if operation else None
    return Ok({
        "payment": {
            "id": payment.id,
            "total": float(payment.total),
            "status": payment.status,
            "provider": payment.provider,
            "reference": payment.provider_reference,
            "created_at": capacity.as_utc(payment.created_at).isoformat(),
            "operation_id": operation.id if operation else None,
            "quantity": operation.quantity if operation else None,
            "unit_price": float(event.base_price) if event else None,
            "event": event_summary(event) if event else None,
        }
    })
