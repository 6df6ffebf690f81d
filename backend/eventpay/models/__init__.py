"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from eventpay.models.base import Base
from eventpay.models.user import User
from eventpay.models.event import Event
from eventpay.models.payment import Payment, PaymentStatus, PaymentProvider
from eventpay.models.operation import Operation, OperationType
from eventpay.models.refund_request import RefundRequest, RefundRequestStatus
from eventpay.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = [
    "Base", "User", "Event", "Payment", "PaymentStatus", "PaymentProvider",
    "Operation", "OperationType", "RefundRequest", "RefundRequestStatus", "WebhookEvent"
]
