"""Refund request tests - creation rules, admin decisions and the HTTP API"""
import pytest
from datetime import timedelta
from decimal import Decimal

from conftest import login, make_event, make_reservation
from eventpay.core.errors import Err, NotFoundError, Ok, ValidationError
from eventpay.models import Operation, Payment, PaymentStatus, RefundRequest, RefundRequestStatus
from eventpay.services.refund_service import (
    list_refund_requests, list_user_refund_requests, process_refund_request, request_refund
)
from eventpay.services.reservation_service import cancel_reservation, list_reservations


def _paid_reservation(db_session, user, quantity=2, available_places=8):
    event = make_event(db_session, capacity=10, available_places=available_places)
    operation = make_reservation(db_session, user, event, quantity=quantity, status=PaymentStatus.PAID.value)
    return event, operation


@pytest.mark.critical
class TestRequestRefund:
    """Only paid reservations qualify, once, up to the amount paid"""

    def test_paid_reservation_opens_pending_request(self, db_session, store, test_user):
        _, operation = _paid_reservation(db_session, test_user)

        result = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)

        assert isinstance(result, Ok)
        view = result.value["refund_request"]
        assert view["status"] == RefundRequestStatus.PENDING.value
        assert view["amount"] == 50.0
        assert view["payment_id"] == operation.payment_id
        assert view["event"]["name"] == "Jazz Night"
        assert db_session.query(RefundRequest).count() == 1

    def test_pending_payment_cannot_be_refunded(self, db_session, store, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event)

        result = request_refund(test_user.id, operation.id, Decimal("10.00"), "Changed my mind", store)

        assert isinstance(result.error, ValidationError)
        assert db_session.query(RefundRequest).count() == 0

    def test_amount_capped_at_payment_total(self, db_session, store, test_user):
        _, operation = _paid_reservation(db_session, test_user)

        over = request_refund(test_user.id, operation.id, Decimal("50.01"), "Cannot attend", store)
        exact = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)

        assert isinstance(over.error, ValidationError)
        assert "50.00" in over.error.message
        assert isinstance(exact, Ok)

    def test_one_open_request_per_reservation(self, db_session, store, test_user):
        _, operation = _paid_reservation(db_session, test_user)
        request_refund(test_user.id, operation.id, Decimal("20.00"), "Cannot attend", store)

        second = request_refund(test_user.id, operation.id, Decimal("20.00"), "Still cannot attend", store)

        assert isinstance(second.error, ValidationError)
        assert db_session.query(RefundRequest).count() == 1

    def test_new_request_allowed_after_refusal(self, db_session, store, test_user, admin_user):
        _, operation = _paid_reservation(db_session, test_user)
        first = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)
        process_refund_request(first.value["refund_request"]["id"], "refused", admin_user.id, store)

        second = request_refund(test_user.id, operation.id, Decimal("25.00"), "Half then", store)

        assert isinstance(second, Ok)

    def test_other_users_reservation_is_not_found(self, db_session, store, test_user, other_user):
        _, operation = _paid_reservation(db_session, other_user)

        result = request_refund(test_user.id, operation.id, Decimal("10.00"), "Not mine", store)

        assert isinstance(result.error, NotFoundError)

    def test_blank_reason_is_rejected(self, db_session, store, test_user):
        _, operation = _paid_reservation(db_session, test_user)

        result = request_refund(test_user.id, operation.id, Decimal("10.00"), "   ", store)

        assert isinstance(result.error, ValidationError)


@pytest.mark.critical
class TestProcessRefund:
    """Approval refunds the payment and restores capacity; refusal changes nothing else"""

    def _open(self, db_session, store, user, **kwargs):
        event, operation = _paid_reservation(db_session, user, **kwargs)
        result = request_refund(user.id, operation.id, Decimal("50.00"), "Cannot attend", store)
        return event, operation, result.value["refund_request"]["id"]

    def test_approval_refunds_payment_and_releases_places(self, db_session, store, test_user, admin_user):
        event, operation, refund_id = self._open(db_session, store, test_user)
        payment_id = operation.payment_id

        result = process_refund_request(refund_id, "approved", admin_user.id, store, admin_comment="OK")

        assert isinstance(result, Ok)
        assert result.value["released_places"] == 2
        assert result.value["refund_request"]["status"] == RefundRequestStatus.APPROVED.value
        assert result.value["refund_request"]["admin_comment"] == "OK"
        assert result.value["refund_request"]["processed_at"] is not None
        db_session.expire_all()
        assert db_session.get(Payment, payment_id).status == PaymentStatus.REFUNDED.value
        assert db_session.get(RefundRequest, refund_id).processed_by_id == admin_user.id
        db_session.refresh(event)
        assert event.available_places == 10

    def test_released_places_never_exceed_capacity(self, db_session, store, test_user, admin_user):
        event, _, refund_id = self._open(db_session, store, test_user, available_places=9)

        result = process_refund_request(refund_id, "approved", admin_user.id, store)

        assert result.value["released_places"] == 0
        db_session.refresh(event)
        assert event.available_places == 9

    def test_refusal_keeps_payment_and_capacity(self, db_session, store, test_user, admin_user):
        event, operation, refund_id = self._open(db_session, store, test_user)

        result = process_refund_request(refund_id, "refused", admin_user.id, store, admin_comment="Too late")

        assert result.value["released_places"] == 0
        db_session.expire_all()
        assert db_session.get(Payment, operation.payment_id).status == PaymentStatus.PAID.value
        db_session.refresh(event)
        assert event.available_places == 8

    def test_request_is_decided_once(self, db_session, store, test_user, admin_user):
        event, _, refund_id = self._open(db_session, store, test_user)
        process_refund_request(refund_id, "approved", admin_user.id, store)

        again = process_refund_request(refund_id, "approved", admin_user.id, store)

        assert isinstance(again.error, ValidationError)
        db_session.refresh(event)
        assert event.available_places == 10

    def test_approval_fails_when_payment_no_longer_paid(self, db_session, store, test_user, admin_user):
        event, operation, refund_id = self._open(db_session, store, test_user)
        store.transition_payment(operation.payment_id, PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value)
        store.commit()

        result = process_refund_request(refund_id, "approved", admin_user.id, store)

        assert isinstance(result.error, ValidationError)
        db_session.expire_all()
        assert db_session.get(RefundRequest, refund_id).status == RefundRequestStatus.PENDING.value
        db_session.refresh(event)
        assert event.available_places == 8

    def test_unknown_request_is_not_found(self, store, admin_user):
        result = process_refund_request(999, "approved", admin_user.id, store)
        assert isinstance(result.error, NotFoundError)

    def test_invalid_decision_is_rejected(self, db_session, store, test_user, admin_user):
        _, _, refund_id = self._open(db_session, store, test_user)
        result = process_refund_request(refund_id, "maybe", admin_user.id, store)
        assert isinstance(result, Err)


@pytest.mark.high
class TestRefundsAndReservations:
    """Refund requests interact with cancellation and listings"""

    def test_open_request_blocks_cancellation(self, db_session, store, test_user):
        event, operation = _paid_reservation(db_session, test_user)
        request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)

        result = cancel_reservation(test_user.id, operation.id, store)
        listing = list_reservations(test_user.id, store)

        assert isinstance(result.error, ValidationError)
        assert db_session.get(Operation, operation.id) is not None
        assert listing["reservations"][0]["can_cancel"] is False

    def test_refunded_reservation_is_listed_but_not_cancellable(self, db_session, store, test_user, admin_user):
        _, operation = _paid_reservation(db_session, test_user)
        opened = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)
        process_refund_request(opened.value["refund_request"]["id"], "approved", admin_user.id, store)

        listing = list_reservations(test_user.id, store)

        reservation = listing["reservations"][0]
        assert reservation["payment"]["status"] == PaymentStatus.REFUNDED.value
        assert reservation["can_cancel"] is False
        assert listing["stats"]["total_spent"] == 0.0

    def test_cancelling_after_refusal_keeps_request_history(self, db_session, store, test_user, admin_user):
        event = make_event(db_session, starts_in=timedelta(days=7))
        operation = make_reservation(db_session, test_user, event, status=PaymentStatus.PAID.value)
        opened = request_refund(test_user.id, operation.id, Decimal("10.00"), "Cannot attend", store)
        refund_id = opened.value["refund_request"]["id"]
        process_refund_request(refund_id, "refused", admin_user.id, store)

        result = cancel_reservation(test_user.id, operation.id, store)

        assert isinstance(result, Ok)
        db_session.expire_all()
        refund = db_session.get(RefundRequest, refund_id)
        assert refund.operation_id is None
        assert refund.status == RefundRequestStatus.REFUSED.value

    def test_listings(self, db_session, store, test_user, other_user):
        _, mine = _paid_reservation(db_session, test_user)
        _, theirs = _paid_reservation(db_session, other_user)
        request_refund(test_user.id, mine.id, Decimal("5.00"), "Mine", store)
        request_refund(other_user.id, theirs.id, Decimal("5.00"), "Theirs", store)

        assert [r["reason"] for r in list_user_refund_requests(test_user.id, store)] == ["Mine"]
        assert len(list_refund_requests(store)) == 2


@pytest.mark.high
class TestRefundEndpoints:
    """Refund routes: buyer creation, admin-only decisions"""

    def test_create_refund_request(self, authenticated_client, db_session, test_user):
        _, operation = _paid_reservation(db_session, test_user)

        response = authenticated_client.post(
            "/refunds", json={"operation_id": operation.id, "amount": "30.00", "reason": "Cannot attend"}
        )

        assert response.status_code == 201
        assert response.json()["refund_request"]["amount"] == 30.0

        listed = authenticated_client.get("/refunds")
        assert listed.status_code == 200
        assert len(listed.json()["refund_requests"]) == 1

    def test_business_rule_violation_is_400(self, authenticated_client, db_session, test_user, test_event):
        operation = make_reservation(db_session, test_user, test_event)

        response = authenticated_client.post(
            "/refunds", json={"operation_id": operation.id, "amount": "10.00", "reason": "Cannot attend"}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    def test_non_positive_amount_is_rejected_by_schema(self, authenticated_client, db_session, test_user):
        _, operation = _paid_reservation(db_session, test_user)

        response = authenticated_client.post(
            "/refunds", json={"operation_id": operation.id, "amount": "0", "reason": "Cannot attend"}
        )

        assert response.status_code == 422

    def test_non_admin_cannot_decide(self, authenticated_client, db_session, store, test_user):
        _, operation = _paid_reservation(db_session, test_user)
        opened = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)

        response = authenticated_client.post(
            f"/refunds/{opened.value['refund_request']['id']}/process", json={"status": "approved"}
        )

        assert response.status_code == 403
        assert authenticated_client.get("/refunds/all").status_code == 403

    def test_admin_approves(self, client, mock_redis, db_session, store, test_user, admin_user):
        event, operation = _paid_reservation(db_session, test_user)
        opened = request_refund(test_user.id, operation.id, Decimal("50.00"), "Cannot attend", store)
        login(client, mock_redis, admin_user)

        response = client.post(
            f"/refunds/{opened.value['refund_request']['id']}/process",
            json={"status": "approved", "admin_comment": "Refunded via dashboard"},
        )

        assert response.status_code == 200
        assert response.json()["released_places"] == 2
        assert len(client.get("/refunds/all").json()["refund_requests"]) == 1
        db_session.refresh(event)
        assert event.available_places == 10

    def test_invalid_decision_value_is_rejected_by_schema(self, client, mock_redis, admin_user):
        login(client, mock_redis, admin_user)
        response = client.post("/refunds/1/process", json={"status": "maybe"})
        assert response.status_code == 422
