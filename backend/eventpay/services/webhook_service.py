"""Webhook intake for Stripe and PayPal.

Verifies the delivery, records the provider event id for idempotency, decodes
the body into a reconciliation command and hands it to the reconciler.
Only authentication and malformed-body failures are reported back as errors;
processing failures are logged and acknowledged so the provider does not
retry indefinitely.
"""
import json
import logging
from typing import Any, Dict, Mapping, Optional

import httpx
import stripe

from eventpay.core.errors import Err, Ok, Result, ValidationError, WebhookSignatureError
from eventpay.core.logging import webhooks_logger
from eventpay.core.metrics import webhook_events_counter
from eventpay.db.store import PaymentStore
from eventpay.models import PaymentProvider, PaymentStatus
from eventpay.schemas.webhooks import DecodedEvent, OrderApproved, decode_paypal_event, decode_stripe_event
from eventpay.services import paypal_service, stripe_service
from eventpay.services.paypal_service import PayPalAPIError
from eventpay.services.reconciler import reconcile

logger = logging.getLogger(__name__)


def _load_json(payload: bytes) -> Dict[str, Any]:
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("Webhook body must be a JSON object")
    return data


def process_stripe_webhook(
    payload: bytes,
    sig_header: Optional[str],
    store: PaymentStore
) -> Result[Dict[str, Any]]:
    """Process a Stripe webhook delivery

    Args:
        payload: Raw request body as bytes (must not be parsed before verification)
        sig_header: Stripe-Signature header
        store: Payment store

    Returns:
        Ok with the processing status, or Err for signature and payload failures
    """
    provider = PaymentProvider.STRIPE.value
    if not sig_header:
        webhook_events_counter.labels(provider=provider, outcome="invalid_signature").inc()
        return Err(WebhookSignatureError("Missing Stripe-Signature header"))

    try:
        stripe_service.verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        webhooks_logger.error(f"Invalid Stripe webhook signature: {e}")
        webhook_events_counter.labels(provider=provider, outcome="invalid_signature").inc()
        return Err(WebhookSignatureError())
    except ValueError as e:
        webhooks_logger.error(f"Stripe webhook rejected: {e}")
        webhook_events_counter.labels(provider=provider, outcome="invalid_signature").inc()
        return Err(WebhookSignatureError(str(e)))

    try:
        raw = _load_json(payload)
        decoded = decode_stripe_event(raw)
    except ValueError as e:
        webhooks_logger.error(f"Invalid Stripe webhook payload: {e}")
        webhook_events_counter.labels(provider=provider, outcome="invalid_payload").inc()
        return Err(ValidationError("Invalid payload"))

    return Ok(_dispatch(provider, decoded, raw, store))


def process_paypal_webhook(
    payload: bytes,
    headers: Mapping[str, str],
    store: PaymentStore
) -> Result[Dict[str, Any]]:
    """Process a PayPal webhook delivery.

    Signature verification goes through PayPal's verify API when
    PAYPAL_WEBHOOK_ID is configured; without it production rejects every delivery.
    """
    provider = PaymentProvider.PAYPAL.value
    try:
        raw = _load_json(payload)
    except ValueError as e:
        webhooks_logger.error(f"Invalid PayPal webhook body: {e}")
        webhook_events_counter.labels(provider=provider, outcome="invalid_payload").inc()
        return Err(ValidationError("Invalid payload"))

    try:
        verified = paypal_service.verify_webhook_signature(headers, raw)
    except (PayPalAPIError, httpx.HTTPError, ValueError) as e:
        webhooks_logger.error(f"PayPal webhook verification failed: {e}")
        verified = False
    if not verified:
        webhook_events_counter.labels(provider=provider, outcome="invalid_signature").inc()
        return Err(WebhookSignatureError())

    try:
        decoded = decode_paypal_event(raw)
    except ValueError as e:
        webhooks_logger.error(f"Invalid PayPal webhook payload: {e}")
        webhook_events_counter.labels(provider=provider, outcome="invalid_payload").inc()
        return Err(ValidationError("Invalid payload"))

    return Ok(_dispatch(provider, decoded, raw, store))


def _dispatch(provider: str, decoded: DecodedEvent, raw: Dict[str, Any], store: PaymentStore) -> Dict[str, Any]:
    # Log event for idempotency
    webhook_event = store.log_webhook_event(provider, decoded.event_id, decoded.event_type, raw)
    if webhook_event.processed:
        webhooks_logger.info(f"{provider} webhook event {decoded.event_id} already processed")
        webhook_events_counter.labels(provider=provider, outcome="already_processed").inc()
        return {"status": "already_processed"}

    if isinstance(decoded.command, OrderApproved):
        outcome = _capture_approved_order(decoded.command, store)
    else:
        outcome = reconcile(decoded.command, store).outcome

    error_message = f"Processing failed ({outcome})" if outcome == "error" else None
    store.mark_webhook_event_processed(provider, decoded.event_id, error_message=error_message)
    webhook_events_counter.labels(provider=provider, outcome=outcome).inc()
    webhooks_logger.info(
        f"Processed {provider} webhook event {decoded.event_id} of type {decoded.event_type}: {outcome}"
    )
    return {"status": outcome}


def _capture_approved_order(command: OrderApproved, store: PaymentStore) -> str:
    """Capture a buyer-approved PayPal order; the capture webhook then confirms the payment"""
    payment = store.get_payment_by_reference(command.provider, command.reference)
    if not payment:
        logger.warning(f"No payment found for approved PayPal order {command.reference}")
        return "not_found"
    if payment.status != PaymentStatus.PENDING.value:
        return "duplicate"

    try:
        paypal_service.capture_order(command.reference)
    except (PayPalAPIError, httpx.HTTPError, ValueError) as e:
        logger.error(f"Failed to capture PayPal order {command.reference}: {e}", exc_info=True)
        return "error"
    return "capture_requested"
