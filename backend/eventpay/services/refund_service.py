"""Refund requests for paid reservations.

A buyer asks for (part of) a paid reservation to be refunded; an admin
approves or refuses it. Approval moves the payment ``paid -> refunded`` and
gives the reservation's places back to the event. Money is returned through
the provider dashboard, outside this service.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from eventpay.core.config import settings
from eventpay.core.errors import Err, NotFoundError, Ok, Result, ValidationError
from eventpay.core.logging import payments_logger
from eventpay.core.metrics import refund_requests_counter
from eventpay.db.store import PaymentStore
from eventpay.models import PaymentStatus, RefundRequest, RefundRequestStatus
from eventpay.services import capacity
from eventpay.services.checkout_service import event_summary

logger = logging.getLogger(__name__)

PENDING = RefundRequestStatus.PENDING.value


def refund_request_view(refund: RefundRequest) -> Dict[str, Any]:
    operation = refund.operation
    return {
        "id": refund.id,
        "user_id": refund.user_id,
        "operation_id": refund.operation_id,
        "payment_id": refund.payment_id,
        "amount": float(refund.amount),
        "reason": refund.reason,
        "status": refund.status,
        "admin_comment": refund.admin_comment,
        "processed_at": capacity.as_utc(refund.processed_at).isoformat() if refund.processed_at else None,
        "created_at": capacity.as_utc(refund.created_at).isoformat(),
        "quantity": operation.quantity if operation else None,
        "event": event_summary(operation.event) if operation else None,
    }


def request_refund(
    user_id: int,
    operation_id: int,
    amount: Decimal,
    reason: str,
    store: PaymentStore
) -> Result[Dict[str, Any]]:
    """Open a refund request on one of the user's paid reservations.

    Only one pending or approved request may exist per reservation, and the
    amount cannot exceed what was paid.
    """
    operation = store.get_reservation(user_id, operation_id)
    if not operation:
        return Err(NotFoundError("Reservation not found"))

    payment = operation.payment
    if not payment or payment.status != PaymentStatus.PAID.value:
        return Err(ValidationError("Only paid reservations can be refunded"))

    if store.get_open_refund_request(operation.id):
        return Err(ValidationError("A refund request already exists for this reservation"))

    amount = Decimal(amount)
    if amount <= 0:
        return Err(ValidationError("Refund amount must be positive"))
    if amount > Decimal(payment.total):
        return Err(ValidationError(
            f"Refund amount cannot exceed {Decimal(payment.total):.2f} {settings.CURRENCY.upper()}"
        ))

    reason = (reason or "").strip()
    if not reason:
        return Err(ValidationError("A reason is required"))

    refund = RefundRequest(
        user_id=user_id,
        operation_id=operation.id,
        payment_id=payment.id,
        amount=amount,
        reason=reason,
        status=PENDING,
    )
    try:
        store.add_refund_request(refund)
        store.commit()
    except Exception:
        store.rollback()
        logger.error(f"Failed to create refund request for reservation {operation_id}", exc_info=True)
        raise

    refund_requests_counter.labels(outcome="requested").inc()
    payments_logger.info(
        f"Refund request {refund.id} created by user {user_id} for reservation {operation_id}: {amount}"
    )
    return Ok({"refund_request": refund_request_view(refund)})


def list_user_refund_requests(user_id: int, store: PaymentStore) -> List[Dict[str, Any]]:
    return [refund_request_view(r) for r in store.list_refund_requests(user_id)]


def list_refund_requests(store: PaymentStore) -> List[Dict[str, Any]]:
    """All refund requests, for admins"""
    return [refund_request_view(r) for r in store.list_refund_requests()]


def process_refund_request(
    refund_id: int,
    decision: str,
    admin_id: int,
    store: PaymentStore,
    admin_comment: Optional[str] = None,
    now: Optional[datetime] = None
) -> Result[Dict[str, Any]]:
    """Approve or refuse a pending refund request.

    Approval refunds the payment and releases the reservation's places,
    capped at the event's capacity. Each request is decided once.
    """
    if decision not in (RefundRequestStatus.APPROVED.value, RefundRequestStatus.REFUSED.value):
        return Err(ValidationError("Decision must be 'approved' or 'refused'"))

    now = now or capacity.utcnow()
    refund = store.get_refund_request(refund_id)
    if not refund:
        return Err(NotFoundError("Refund request not found"))
    if refund.status != PENDING:
        return Err(ValidationError("Refund request has already been processed"))

    payment_id = refund.payment_id
    operation = refund.operation
    released = 0
    try:
        if not store.transition_refund_request(
            refund_id, PENDING, decision,
            admin_comment=admin_comment, processed_by_id=admin_id, processed_at=now
        ):
            store.rollback()
            return Err(ValidationError("Refund request has already been processed"))

        if decision == RefundRequestStatus.APPROVED.value:
            if payment_id is None or not store.transition_payment(
                payment_id, PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value
            ):
                store.rollback()
                return Err(ValidationError("Reservation payment is no longer paid"))
            if operation and capacity.release(operation.event_id, operation.quantity, store):
                released = operation.quantity
        store.commit()
    except Exception:
        store.rollback()
        logger.error(f"Failed to process refund request {refund_id}", exc_info=True)
        raise

    refund_requests_counter.labels(outcome=decision).inc()
    payments_logger.info(
        f"Refund request {refund_id} {decision} by admin {admin_id} "
        f"(payment {payment_id}, {released} place(s) released)"
    )
    return Ok({
        "refund_request": refund_request_view(store.get_refund_request(refund_id)),
        "released_places": released,
    })
