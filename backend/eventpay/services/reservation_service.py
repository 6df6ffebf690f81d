"""Reservation listing and cancellation for the current user"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional

from eventpay.core.errors import Err, NotFoundError, Ok, Result, TimingError, ValidationError
from eventpay.core.metrics import reservation_cancellations_counter
from eventpay.db.store import PaymentStore
from eventpay.models import Operation, PaymentProvider, PaymentStatus, RefundRequestStatus
from eventpay.services import capacity, stripe_service

logger = logging.getLogger(__name__)

# Paid reservations can be cancelled up to this long before the event starts
PAID_CANCELLATION_NOTICE = timedelta(hours=24)


def timing_status(start: datetime, end: datetime, now: datetime) -> str:
    if start > now:
        return "upcoming"
    if end < now:
        return "finished"
    return "ongoing"


def has_open_refund_request(operation: Operation) -> bool:
    open_statuses = (RefundRequestStatus.PENDING.value, RefundRequestStatus.APPROVED.value)
    return any(r.status in open_statuses for r in operation.refund_requests)


def can_cancel(operation: Operation, now: datetime) -> bool:
    start = capacity.as_utc(operation.event.start_date)
    if start <= now:
        return False
    payment = operation.payment
    if payment and payment.status in (PaymentStatus.REFUNDED.value, PaymentStatus.CANCELLED.value):
        return False
    if has_open_refund_request(operation):
        return False
    if payment and payment.status == PaymentStatus.PAID.value:
        return start > now + PAID_CANCELLATION_NOTICE
    return True


def _reservation_view(operation: Operation, now: datetime) -> Dict[str, Any]:
    event = operation.event
    payment = operation.payment
    start = capacity.as_utc(event.start_date)
    end = capacity.as_utc(event.end_date)

    if payment:
        total_price = Decimal(payment.total)
    else:
        total_price = (Decimal(event.base_price) * operation.quantity).quantize(Decimal("0.01"))

    return {
        "id": operation.id,
        "quantity": operation.quantity,
        "unit_price": float(event.base_price),
        "total_price": float(total_price),
        "reserved_at": capacity.as_utc(operation.created_at).isoformat(),
        "status": timing_status(start, end, now),
        "can_cancel": can_cancel(operation, now),
        "event": {
            "id": event.id,
            "name": event.name,
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        },
        "payment": {
            "id": payment.id,
            "status": payment.status,
            "provider": payment.provider,
            "total": float(payment.total),
        } if payment else None,
    }


def list_reservations(user_id: int, store: PaymentStore, now: Optional[datetime] = None) -> Dict[str, Any]:
    """List the user's reservations with timing status, cancellability and totals"""
    now = now or capacity.utcnow()
    operations = store.list_reservations(user_id)
    reservations = [_reservation_view(op, now) for op in operations]

    total_spent = sum(
        (Decimal(op.payment.total) for op in operations
         if op.payment and op.payment.status == PaymentStatus.PAID.value),
        Decimal("0")
    )
    return {
        "reservations": reservations,
        "stats": {
            "total_reservations": len(reservations),
            "upcoming": sum(1 for r in reservations if r["status"] == "upcoming"),
            "total_places": sum(r["quantity"] for r in reservations),
            "total_spent": float(total_spent),
        },
    }


def cancel_reservation(
    user_id: int,
    operation_id: int,
    store: PaymentStore,
    now: Optional[datetime] = None
) -> Result[Dict[str, Any]]:
    """Cancel one of the user's reservations.

    Places are only given back when the payment was confirmed; a pending
    payment never took any. The payment is kept as ``cancelled`` and the
    reservation is deleted.
    """
    now = now or capacity.utcnow()
    operation = store.get_reservation(user_id, operation_id)
    if not operation:
        return Err(NotFoundError("Reservation not found"))

    event = operation.event
    payment = operation.payment
    if capacity.has_started(event, now):
        return Err(TimingError("Cannot cancel a reservation for an event that has already started"))

    payment_status = payment.status if payment else None
    if payment_status in (PaymentStatus.REFUNDED.value, PaymentStatus.CANCELLED.value):
        return Err(ValidationError(f"Reservation payment is already {payment_status}"))
    if has_open_refund_request(operation):
        return Err(ValidationError("A refund request is open for this reservation"))
    if not can_cancel(operation, now):
        return Err(TimingError("Paid reservations can only be cancelled more than 24 hours before the event"))

    expire_session = None
    if payment and payment_status == PaymentStatus.PENDING.value and payment.provider == PaymentProvider.STRIPE.value:
        expire_session = payment.provider_reference

    quantity = operation.quantity
    released = 0
    try:
        if payment and not store.transition_payment(payment.id, payment_status, PaymentStatus.CANCELLED.value):
            store.rollback()
            return Err(ValidationError("Reservation payment changed while cancelling, please retry"))
        if payment_status == PaymentStatus.PAID.value:
            if capacity.release(event.id, quantity, store):
                released = quantity
        store.delete_operation(operation)
        store.commit()
    except Exception:
        store.rollback()
        logger.error(f"Failed to cancel reservation {operation_id} for user {user_id}", exc_info=True)
        raise

    # Stop the buyer from paying a session whose reservation is gone
    if expire_session:
        stripe_service.expire_checkout_session(expire_session)

    reservation_cancellations_counter.labels(payment_status=payment_status or "none").inc()
    logger.info(
        f"User {user_id} cancelled reservation {operation_id} "
        f"(payment status {payment_status}, {released} place(s) released)"
    )
    return Ok({
        "status": "cancelled",
        "operation_id": operation_id,
        "released_places": released,
    })
