"""Webhook payload schemas and provider-neutral reconciliation commands.

Provider payloads are validated against a fixed schema per event type
(discriminated on ``type`` for Stripe and ``event_type`` for PayPal) and then
mapped to one of the command variants the reconciler dispatches on.
Unknown event types decode to ``Ignored``.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from eventpay.models import PaymentProvider


# ============================================================================
# RECONCILIATION COMMANDS
# ============================================================================

@dataclass(frozen=True)
class PaymentSucceeded:
    provider: str
    reference: str
    amount: Optional[Decimal] = None
    capture_id: Optional[str] = None


@dataclass(frozen=True)
class PaymentExpired:
    provider: str
    reference: str


@dataclass(frozen=True)
class PaymentFailed:
    provider: str
    reference: str


@dataclass(frozen=True)
class OrderApproved:
    reference: str
    provider: str = PaymentProvider.PAYPAL.value


@dataclass(frozen=True)
class Ignored:
    provider: str
    event_type: str


WebhookCommand = Union[PaymentSucceeded, PaymentExpired, PaymentFailed, OrderApproved, Ignored]


@dataclass(frozen=True)
class DecodedEvent:
    event_id: str
    event_type: str
    command: WebhookCommand


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _Envelope(_Payload):
    id: str


# ============================================================================
# STRIPE
# ============================================================================

# checkout.session.completed fires before async methods (bank debits) settle
STRIPE_SETTLED_PAYMENT_STATUSES = ("paid", "no_payment_required")


class StripeCheckoutSession(_Payload):
    id: str
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


class StripeSessionData(_Payload):
    object: StripeCheckoutSession


class StripeSessionCompleted(_Envelope):
    type: Literal["checkout.session.completed", "checkout.session.async_payment_succeeded"]
    data: StripeSessionData


class StripeSessionExpired(_Envelope):
    type: Literal["checkout.session.expired"]
    data: StripeSessionData


class StripeSessionFailed(_Envelope):
    type: Literal["checkout.session.async_payment_failed"]
    data: StripeSessionData


StripeEvent = Annotated[
    Union[StripeSessionCompleted, StripeSessionExpired, StripeSessionFailed],
    Field(discriminator="type"),
]
_stripe_adapter = TypeAdapter(StripeEvent)

STRIPE_HANDLED_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.expired",
    "checkout.session.async_payment_failed",
})


class _StripeEnvelope(_Envelope):
    type: str


def decode_stripe_event(raw: dict) -> DecodedEvent:
    """Decode a verified Stripe event body.

    Raises:
        pydantic.ValidationError: If the body does not match the schema for its type
    """
    envelope = _StripeEnvelope.model_validate(raw)
    provider = PaymentProvider.STRIPE.value

    if envelope.type not in STRIPE_HANDLED_TYPES:
        return DecodedEvent(envelope.id, envelope.type, Ignored(provider, envelope.type))

    event = _stripe_adapter.validate_python(raw)
    session = event.data.object

    if isinstance(event, StripeSessionExpired):
        command = PaymentExpired(provider, session.id)
    elif isinstance(event, StripeSessionFailed):
        command = PaymentFailed(provider, session.id)
    elif event.type == "checkout.session.completed" and session.payment_status not in STRIPE_SETTLED_PAYMENT_STATUSES:
        command = Ignored(provider, f"{event.type}:{session.payment_status}")
    else:
        amount = None
        if session.amount_total is not None:
            amount = (Decimal(session.amount_total) / 100).quantize(Decimal("0.01"))
        command = PaymentSucceeded(provider, session.id, amount)

    return DecodedEvent(event.id, event.type, command)


# ============================================================================
# PAYPAL
# ============================================================================

class PayPalRelatedIds(_Payload):
    order_id: str


class PayPalSupplementaryData(_Payload):
    related_ids: PayPalRelatedIds


class PayPalAmount(_Payload):
    currency_code: Optional[str] = None
    value: Decimal


class PayPalCaptureResource(_Payload):
    id: str
    amount: Optional[PayPalAmount] = None
    supplementary_data: PayPalSupplementaryData


class PayPalOrderResource(_Payload):
    id: str


class PayPalCaptureCompleted(_Envelope):
    event_type: Literal["PAYMENT.CAPTURE.COMPLETED"]
    resource: PayPalCaptureResource


class PayPalCaptureDenied(_Envelope):
    event_type: Literal["PAYMENT.CAPTURE.DENIED", "PAYMENT.CAPTURE.DECLINED"]
    resource: PayPalCaptureResource


class PayPalOrderApproved(_Envelope):
    event_type: Literal["CHECKOUT.ORDER.APPROVED"]
    resource: PayPalOrderResource


PayPalEvent = Annotated[
    Union[PayPalCaptureCompleted, PayPalCaptureDenied, PayPalOrderApproved],
    Field(discriminator="event_type"),
]
_paypal_adapter = TypeAdapter(PayPalEvent)

PAYPAL_HANDLED_TYPES = frozenset({
    "PAYMENT.CAPTURE.COMPLETED",
    "PAYMENT.CAPTURE.DENIED",
    "PAYMENT.CAPTURE.DECLINED",
    "CHECKOUT.ORDER.APPROVED",
})


class _PayPalEnvelope(_Envelope):
    event_type: str


def decode_paypal_event(raw: dict) -> DecodedEvent:
    """Decode a PayPal webhook body.

    Raises:
        pydantic.ValidationError: If the body does not match the schema for its type
    """
    envelope = _PayPalEnvelope.model_validate(raw)
    provider = PaymentProvider.PAYPAL.value

    if envelope.event_type not in PAYPAL_HANDLED_TYPES:
        return DecodedEvent(envelope.id, envelope.event_type, Ignored(provider, envelope.event_type))

    event = _paypal_adapter.validate_python(raw)

    if isinstance(event, PayPalOrderApproved):
        command = OrderApproved(event.resource.id)
    elif isinstance(event, PayPalCaptureDenied):
        command = PaymentFailed(provider, event.resource.supplementary_data.related_ids.order_id)
    else:
        resource = event.resource
        command = PaymentSucceeded(
            provider,
            resource.supplementary_data.related_ids.order_id,
            resource.amount.value if resource.amount else None,
            capture_id=resource.id,
        )

    return DecodedEvent(event.id, event.event_type, command)
