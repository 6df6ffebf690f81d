"""Checkout and payment status API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from eventpay.core.errors import Err, to_http_exception
from eventpay.core.security import require_auth, require_csrf
from eventpay.db.session import get_store
from eventpay.db.store import PaymentStore
from eventpay.models import PaymentProvider
from eventpay.schemas.payments import CheckoutRequest
from eventpay.services.checkout_service import initiate_checkout
from eventpay.services.payment_service import get_payment_status

router = APIRouter(prefix="/payment", tags=["payments"])
logger = logging.getLogger(__name__)


@router.post("/stripe/checkout", status_code=201)
def create_stripe_checkout(
    request_data: CheckoutRequest,
    user_id: int = Depends(require_csrf),
    store: PaymentStore = Depends(get_store)
):
    """Create a Stripe Checkout session for a reservation"""
    result = initiate_checkout(
        PaymentProvider.STRIPE.value, user_id, request_data.event_id, request_data.quantity, store
    )
    if isinstance(result, Err):
        logger.info(f"Checkout rejected for user {user_id}, event {request_data.event_id}: {result.error}")
        raise to_http_exception(result.error)

    checkout = result.value
    return {
        "checkout_url": checkout.redirect_url,
        "session_id": checkout.reference,
        "payment_id": checkout.payment_id,
        "operation_id": checkout.operation_id,
        "total_amount": float(checkout.total_amount),
        "quantity": checkout.quantity,
        "unit_price": float(checkout.unit_price),
        "event": checkout.event,
    }


@router.post("/paypal/checkout", status_code=201)
def create_paypal_checkout(
    request_data: CheckoutRequest,
    user_id: int = Depends(require_csrf),
    store: PaymentStore = Depends(get_store)
):
    """Create a PayPal order for a reservation"""
    result = initiate_checkout(
        PaymentProvider.PAYPAL.value, user_id, request_data.event_id, request_data.quantity, store
    )
    if isinstance(result, Err):
        logger.info(f"Checkout rejected for user {user_id}, event {request_data.event_id}: {result.error}")
        raise to_http_exception(result.error)

    checkout = result.value
    return {
        "approve_url": checkout.redirect_url,
        "order_id": checkout.reference,
        "payment_id": checkout.payment_id,
        "operation_id": checkout.operation_id,
        "total_amount": float(checkout.total_amount),
        "quantity": checkout.quantity,
        "unit_price": float(checkout.unit_price),
        "event": checkout.event,
    }


@router.get("/status")
def payment_status(
    session_id: Optional[str] = Query(None),
    payment_id: Optional[int] = Query(None),
    order_id: Optional[str] = Query(None),
    user_id: int = Depends(require_auth),
    store: PaymentStore = Depends(get_store)
):
    """Get the status of one of the current user's payments"""
    result = get_payment_status(
        user_id, store, session_id=session_id, order_id=order_id, payment_id=payment_id
    )
    if isinstance(result, Err):
        # A missing lookup key is a bad request here, not an unprocessable body
        status_code = 400 if result.error.http_status == 422 else None
        raise to_http_exception(result.error, status_code)
    return result.value
