"""Webhook reconciler tests"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from conftest import make_event, make_reservation
from eventpay.models import Operation, Payment, PaymentStatus
from eventpay.schemas.webhooks import Ignored, PaymentExpired, PaymentFailed, PaymentSucceeded
from eventpay.services.reconciler import reconcile


def _state(db_session, event, payment_id):
    db_session.expire_all()
    db_session.refresh(event)
    payment = db_session.get(Payment, payment_id)
    operation = db_session.query(Operation).filter(Operation.payment_id == payment_id).first()
    return event.available_places, payment.status, operation


@pytest.mark.critical
class TestPaymentSucceeded:
    """pending -> paid takes capacity exactly once"""

    def test_pending_becomes_paid_and_takes_capacity(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=3, reference="cs_1")
        payment_id = operation.payment_id

        result = reconcile(PaymentSucceeded("stripe", "cs_1", Decimal("75.00")), store)

        assert result.outcome == "paid"
        available, status, kept = _state(db_session, test_event, payment_id)
        assert available == 7
        assert status == PaymentStatus.PAID.value
        assert kept is not None

    def test_provider_amount_and_capture_id_are_stored(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=2, provider="paypal", reference="ORDER-1")

        reconcile(PaymentSucceeded("paypal", "ORDER-1", Decimal("49.99"), capture_id="CAP-1"), store)

        payment = db_session.get(Payment, operation.payment_id)
        db_session.refresh(payment)
        assert payment.total == Decimal("49.99")
        assert payment.capture_id == "CAP-1"

    def test_duplicate_delivery_changes_capacity_once(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=3, reference="cs_1")
        command = PaymentSucceeded("stripe", "cs_1", Decimal("75.00"))

        first = reconcile(command, store)
        second = reconcile(command, store)

        assert first.outcome == "paid"
        assert second.outcome == "duplicate"
        available, status, _ = _state(db_session, test_event, operation.payment_id)
        assert available == 7
        assert status == PaymentStatus.PAID.value

    def test_success_for_cancelled_payment_is_flagged(self, db_session, store, test_user, test_event, caplog):
        operation = make_reservation(
            db_session, test_user, test_event, quantity=3,
            status=PaymentStatus.CANCELLED.value, reference="cs_1"
        )

        with caplog.at_level("WARNING", logger="webhooks"):
            result = reconcile(PaymentSucceeded("stripe", "cs_1", Decimal("75.00")), store)

        assert result.outcome == "paid_after_cancel"
        assert result.payment_id == operation.payment_id
        available, status, _ = _state(db_session, test_event, operation.payment_id)
        assert available == 10
        assert status == PaymentStatus.CANCELLED.value
        assert "manual refund required" in caplog.text

    def test_insufficient_capacity_refunds_and_deletes_operation(self, db_session, store, test_user):
        event = make_event(db_session, capacity=10, available_places=2)
        operation = make_reservation(db_session, test_user, event, quantity=3, reference="cs_1")
        payment_id = operation.payment_id

        result = reconcile(PaymentSucceeded("stripe", "cs_1"), store)

        assert result.outcome == "refunded"
        available, status, kept = _state(db_session, event, payment_id)
        assert available == 2
        assert status == PaymentStatus.REFUNDED.value
        assert kept is None

    def test_exactly_enough_capacity_is_paid(self, db_session, store, test_user):
        event = make_event(db_session, capacity=10, available_places=3)
        operation = make_reservation(db_session, test_user, event, quantity=3, reference="cs_1")

        assert reconcile(PaymentSucceeded("stripe", "cs_1"), store).outcome == "paid"
        available, _, _ = _state(db_session, event, operation.payment_id)
        assert available == 0

    def test_unknown_reference(self, store):
        assert reconcile(PaymentSucceeded("stripe", "cs_unknown"), store).outcome == "not_found"

    def test_success_after_expiry_is_a_no_op(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=3, reference="cs_1")
        payment_id = operation.payment_id
        reconcile(PaymentExpired("stripe", "cs_1"), store)

        result = reconcile(PaymentSucceeded("stripe", "cs_1"), store)

        assert result.outcome == "duplicate"
        available, status, _ = _state(db_session, test_event, payment_id)
        assert available == 10
        assert status == PaymentStatus.EXPIRED.value

    def test_database_error_rolls_back_and_reports_error(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=3, reference="cs_1")

        with patch.object(store, "decrement_capacity", side_effect=RuntimeError("connection lost")):
            result = reconcile(PaymentSucceeded("stripe", "cs_1"), store)

        assert result.outcome == "error"
        available, status, kept = _state(db_session, test_event, operation.payment_id)
        assert available == 10
        assert status == PaymentStatus.PENDING.value
        assert kept is not None


@pytest.mark.critical
class TestPaymentClosed:
    """Expiry and failure delete the reservation and never touch capacity"""

    @pytest.mark.parametrize("command_type,status", [
        (PaymentExpired, PaymentStatus.EXPIRED.value),
        (PaymentFailed, PaymentStatus.FAILED.value),
    ])
    def test_pending_is_closed_and_operation_deleted(self, db_session, store, test_user, test_event, command_type, status):
        operation = make_reservation(db_session, test_user, test_event, quantity=3, reference="cs_1")
        payment_id = operation.payment_id

        result = reconcile(command_type("stripe", "cs_1"), store)

        assert result.outcome == status
        available, payment_status, kept = _state(db_session, test_event, payment_id)
        assert available == 10
        assert payment_status == status
        assert kept is None

    def test_expiry_of_paid_payment_is_ignored(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event, quantity=3,
                                     status=PaymentStatus.PAID.value, reference="cs_1")

        result = reconcile(PaymentExpired("stripe", "cs_1"), store)

        assert result.outcome == "duplicate"
        _, status, kept = _state(db_session, test_event, operation.payment_id)
        assert status == PaymentStatus.PAID.value
        assert kept is not None

    def test_ignored_command(self, store):
        assert reconcile(Ignored("stripe", "customer.created"), store).outcome == "ignored"
