"""Webhook reconciler: applies provider payment outcomes to payments, reservations and capacity.

Every command runs in a single transaction. The payment is claimed with a
conditional ``pending -> <status>`` update, so a duplicate or racing delivery
for the same payment finds nothing to claim and becomes a no-op. Exceptions
roll back and are reported as the ``error`` outcome; they never propagate to
the provider.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from eventpay.core.logging import webhooks_logger
from eventpay.db.store import PaymentStore
from eventpay.models import PaymentStatus
from eventpay.schemas.webhooks import Ignored, PaymentExpired, PaymentFailed, PaymentSucceeded, WebhookCommand
from eventpay.services import capacity

logger = logging.getLogger(__name__)

PENDING = PaymentStatus.PENDING.value


@dataclass(frozen=True)
class ReconcileOutcome:
    outcome: str  # paid, refunded, expired, failed, paid_after_cancel, duplicate, not_found, ignored, error
    payment_id: Optional[int] = None


def reconcile(command: WebhookCommand, store: PaymentStore) -> ReconcileOutcome:
    """Apply one decoded webhook command"""
    if isinstance(command, Ignored) or not isinstance(command, (PaymentSucceeded, PaymentExpired, PaymentFailed)):
        webhooks_logger.info(f"Ignoring webhook command {command}")
        return ReconcileOutcome("ignored")

    try:
        if isinstance(command, PaymentSucceeded):
            result = _confirm_payment(command, store)
        elif isinstance(command, PaymentExpired):
            result = _close_payment(command.provider, command.reference, PaymentStatus.EXPIRED.value, store)
        else:
            result = _close_payment(command.provider, command.reference, PaymentStatus.FAILED.value, store)
        store.commit()
    except Exception as e:
        store.rollback()
        webhooks_logger.error(
            f"Reconciliation failed for {command.provider} reference {command.reference}: {e}",
            exc_info=True
        )
        return ReconcileOutcome("error")

    webhooks_logger.info(
        f"Reconciled {command.provider} reference {command.reference}: {result.outcome} (payment {result.payment_id})"
    )
    return result


def _confirm_payment(command: PaymentSucceeded, store: PaymentStore) -> ReconcileOutcome:
    payment = store.get_payment_by_reference(command.provider, command.reference)
    if not payment:
        logger.warning(f"No payment found for {command.provider} reference {command.reference}")
        return ReconcileOutcome("not_found")

    if payment.status == PaymentStatus.PAID.value:
        return ReconcileOutcome("duplicate", payment.id)
    if payment.status == PaymentStatus.CANCELLED.value:
        # The buyer paid a session whose reservation was already cancelled
        webhooks_logger.warning(
            f"Payment {payment.id} ({command.provider} reference {command.reference}) succeeded "
            f"after its reservation was cancelled; manual refund required"
        )
        return ReconcileOutcome("paid_after_cancel", payment.id)

    payment_id = payment.id
    operation = store.get_operation_for_payment(payment_id)
    event = store.lock_event(operation.event_id) if operation else None

    values = {}
    if command.amount is not None:
        values["total"] = command.amount
    if command.capture_id:
        values["capture_id"] = command.capture_id

    # Claim first: only one delivery can move this payment out of pending
    if not store.transition_payment(payment_id, PENDING, PaymentStatus.PAID.value, **values):
        return ReconcileOutcome("duplicate", payment_id)

    if operation and event and capacity.commit(event.id, operation.quantity, store):
        return ReconcileOutcome("paid", payment_id)

    # Paid but the places are gone; refund is issued outside this flow
    logger.warning(
        f"Payment {payment_id} confirmed without capacity "
        f"(operation={operation.id if operation else None}, event={event.id if event else None}), marking refunded"
    )
    store.transition_payment(payment_id, PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value)
    if operation:
        store.delete_operation(operation)
    return ReconcileOutcome("refunded", payment_id)


def _close_payment(provider: str, reference: str, status: str, store: PaymentStore) -> ReconcileOutcome:
    payment = store.get_payment_by_reference(provider, reference)
    if not payment:
        logger.warning(f"No payment found for {provider} reference {reference}")
        return ReconcileOutcome("not_found")

    payment_id = payment.id
    if not store.transition_payment(payment_id, PENDING, status):
        return ReconcileOutcome("duplicate", payment_id)

    operation = store.get_operation_for_payment(payment_id)
    if operation:
        store.delete_operation(operation)
    return ReconcileOutcome(status, payment_id)
