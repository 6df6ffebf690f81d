"""Payment store (repository pattern).

Services depend on the ``PaymentStore`` interface and receive it explicitly;
``SqlAlchemyPaymentStore`` is the database-backed implementation. Status and
capacity changes are conditional single-statement updates so concurrent
webhook deliveries cannot both apply.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.util import identity_key

from eventpay.models import (
    Event, Operation, OperationType, Payment, RefundRequest, RefundRequestStatus, User, WebhookEvent
)

logger = logging.getLogger(__name__)


class PaymentStore(ABC):
    """Interface for reservation/payment persistence operations."""

    # Transaction control

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...

    # Events

    @abstractmethod
    def get_event(self, event_id: int) -> Optional[Event]:
        """Return an event by ID, or None if not found."""

    @abstractmethod
    def lock_event(self, event_id: int) -> Optional[Event]:
        """Return an event by ID, locking its row until the transaction ends."""

    @abstractmethod
    def decrement_capacity(self, event_id: int, quantity: int) -> bool:
        """Take ``quantity`` places if that many are available. True if applied."""

    @abstractmethod
    def increment_capacity(self, event_id: int, quantity: int) -> bool:
        """Return ``quantity`` places without exceeding capacity. True if applied."""

    # Payments / operations

    @abstractmethod
    def add_pending_reservation(self, payment: Payment, operation: Operation) -> None:
        """Stage a pending payment and its operation, assigning both IDs."""

    @abstractmethod
    def get_payment(self, payment_id: int) -> Optional[Payment]: ...

    @abstractmethod
    def get_payment_by_reference(self, provider: str, reference: str) -> Optional[Payment]:
        """Return the payment for a provider session/order id."""

    @abstractmethod
    def transition_payment(self, payment_id: int, from_status: str, to_status: str, **values) -> bool:
        """Move a payment from ``from_status`` to ``to_status``. True if this call applied it."""

    @abstractmethod
    def get_operation_for_payment(self, payment_id: int) -> Optional[Operation]: ...

    @abstractmethod
    def get_reservation(self, user_id: int, operation_id: int) -> Optional[Operation]:
        """Return one of the user's reservations with event and payment loaded."""

    @abstractmethod
    def list_reservations(self, user_id: int) -> List[Operation]:
        """Return the user's reservations, newest first."""

    @abstractmethod
    def delete_operation(self, operation: Operation) -> None: ...

    # Users

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]: ...

    # Refund requests

    @abstractmethod
    def add_refund_request(self, refund_request: RefundRequest) -> None: ...

    @abstractmethod
    def get_refund_request(self, refund_id: int) -> Optional[RefundRequest]: ...

    @abstractmethod
    def get_open_refund_request(self, operation_id: int) -> Optional[RefundRequest]:
        """Return the pending or approved request for a reservation, if any."""

    @abstractmethod
    def list_refund_requests(self, user_id: Optional[int] = None) -> List[RefundRequest]:
        """Return refund requests newest first, only the user's when ``user_id`` is given."""

    @abstractmethod
    def transition_refund_request(self, refund_id: int, from_status: str, to_status: str, **values) -> bool:
        """Move a refund request from ``from_status`` to ``to_status``. True if this call applied it."""

    # Webhook event log

    @abstractmethod
    def log_webhook_event(self, provider: str, event_id: str, event_type: str, payload: dict) -> WebhookEvent:
        """Record a provider event (once per provider/event id) and return it."""

    @abstractmethod
    def mark_webhook_event_processed(self, provider: str, event_id: str, error_message: Optional[str] = None) -> None: ...


class SqlAlchemyPaymentStore(PaymentStore):
    """SQLAlchemy-backed store bound to a request-scoped session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _expire_cached(self, model, pk) -> None:
        # Conditional updates bypass the identity map; reload on next access
        instance = self.db.identity_map.get(identity_key(model, pk))
        if instance is not None:
            self.db.expire(instance)

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()

    def get_event(self, event_id: int) -> Optional[Event]:
        return self.db.get(Event, event_id)

    def lock_event(self, event_id: int) -> Optional[Event]:
        # FOR UPDATE is dropped by dialects without row locks (SQLite)
        return self.db.execute(
            select(Event).where(Event.id == event_id).with_for_update()
        ).scalars().first()

    def decrement_capacity(self, event_id: int, quantity: int) -> bool:
        result = self.db.execute(
            update(Event)
            .where(Event.id == event_id, Event.available_places >= quantity)
            .values(available_places=Event.available_places - quantity)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(Event, event_id)
        return result.rowcount == 1

    def increment_capacity(self, event_id: int, quantity: int) -> bool:
        result = self.db.execute(
            update(Event)
            .where(Event.id == event_id, Event.available_places + quantity <= Event.capacity)
            .values(available_places=Event.available_places + quantity)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(Event, event_id)
        return result.rowcount == 1

    def add_pending_reservation(self, payment: Payment, operation: Operation) -> None:
        self.db.add(payment)
        self.db.flush()
        operation.payment_id = payment.id
        self.db.add(operation)
        self.db.flush()

    def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self.db.get(Payment, payment_id)

    def get_payment_by_reference(self, provider: str, reference: str) -> Optional[Payment]:
        return self.db.execute(
            select(Payment).where(Payment.provider == provider, Payment.provider_reference == reference)
        ).scalars().first()

    def transition_payment(self, payment_id: int, from_status: str, to_status: str, **values) -> bool:
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(Payment, payment_id)
        applied = result.rowcount == 1
        if not applied:
            logger.info(f"Payment {payment_id} not in '{from_status}', transition to '{to_status}' skipped")
        return applied

    def get_operation_for_payment(self, payment_id: int) -> Optional[Operation]:
        return self.db.execute(
            select(Operation).where(Operation.payment_id == payment_id)
        ).scalars().first()

    def get_reservation(self, user_id: int, operation_id: int) -> Optional[Operation]:
        return self.db.execute(
            select(Operation)
            .options(joinedload(Operation.event), joinedload(Operation.payment))
            .where(
                Operation.id == operation_id,
                Operation.user_id == user_id,
                Operation.type == OperationType.RESERVATION.value,
            )
        ).scalars().first()

    def list_reservations(self, user_id: int) -> List[Operation]:
        return list(self.db.execute(
            select(Operation)
            .options(joinedload(Operation.event), joinedload(Operation.payment))
            .where(Operation.user_id == user_id, Operation.type == OperationType.RESERVATION.value)
            .order_by(Operation.created_at.desc(), Operation.id.desc())
        ).scalars().all())

    def delete_operation(self, operation: Operation) -> None:
        self.db.delete(operation)
        self.db.flush()

    def log_webhook_event(self, provider: str, event_id: str, event_type: str, payload: dict) -> WebhookEvent:
        webhook_event = self.db.execute(
            select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
        ).scalars().first()
        if not webhook_event:
            webhook_event = WebhookEvent(
                provider=provider,
                event_id=event_id,
                event_type=event_type,
                payload=payload,
                processed=False
            )
            self.db.add(webhook_event)
            self.db.commit()
            self.db.refresh(webhook_event)
        return webhook_event

    def mark_webhook_event_processed(self, provider: str, event_id: str, error_message: Optional[str] = None) -> None:
        webhook_event = self.db.execute(
            select(WebhookEvent).where(WebhookEvent.provider == provider, WebhookEvent.event_id == event_id)
        ).scalars().first()
        if webhook_event:
            webhook_event.processed = True
            webhook_event.processed_at = datetime.now(timezone.utc)
            webhook_event.error_message = error_message
            self.db.commit()

    def get_user(self, user_id: int) -> Optional[User]:
        return self.db.get(User, user_id)

    def add_refund_request(self, refund_request: RefundRequest) -> None:
        self.db.add(refund_request)
        self.db.flush()

    def get_refund_request(self, refund_id: int) -> Optional[RefundRequest]:
        return self.db.get(RefundRequest, refund_id)

    def get_open_refund_request(self, operation_id: int) -> Optional[RefundRequest]:
        return self.db.execute(
            select(RefundRequest).where(
                RefundRequest.operation_id == operation_id,
                RefundRequest.status.in_([RefundRequestStatus.PENDING.value, RefundRequestStatus.APPROVED.value]),
            )
        ).scalars().first()

    def list_refund_requests(self, user_id: Optional[int] = None) -> List[RefundRequest]:
        query = select(RefundRequest).options(joinedload(RefundRequest.operation).joinedload(Operation.event))
        if user_id is not None:
            query = query.where(RefundRequest.user_id == user_id)
        return list(self.db.execute(
            query.order_by(RefundRequest.created_at.desc(), RefundRequest.id.desc())
        ).scalars().all())

    def transition_refund_request(self, refund_id: int, from_status: str, to_status: str, **values) -> bool:
        result = self.db.execute(
            update(RefundRequest)
            .where(RefundRequest.id == refund_id, RefundRequest.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(RefundRequest, refund_id)
        return result.rowcount == 1
