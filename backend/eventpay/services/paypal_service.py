"""PayPal Orders v2 REST integration for reservation payments"""
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

import httpx
import redis

from eventpay.core.config import (
    settings, PAYPAL_TOKEN_URL, PAYPAL_ORDERS_URL, PAYPAL_VERIFY_WEBHOOK_URL,
    CHECKOUT_SUCCESS_PATH, CHECKOUT_CANCEL_PATH
)
from eventpay.db.redis import get_cached_paypal_token, set_cached_paypal_token
from eventpay.models import Event, Payment

logger = logging.getLogger(__name__)

# Refresh the cached token this many seconds before PayPal expires it
TOKEN_EXPIRY_MARGIN = 60

# Transmission headers PayPal signs webhook deliveries with
PAYPAL_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalAPIError(Exception):
    """Raised when the PayPal REST API returns an error or an unusable response"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _client() -> httpx.Client:
    return httpx.Client(timeout=settings.PROVIDER_TIMEOUT)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
        return data.get("message") or data.get("error_description") or data.get("name") or response.text[:200]
    except ValueError:
        return response.text[:200] if response.text else "Unknown error"


def format_amount(amount: Decimal) -> str:
    return f"{Decimal(amount):.2f}"


def get_access_token() -> str:
    """Return a PayPal OAuth access token, cached in Redis until shortly before expiry"""
    if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_CLIENT_SECRET:
        raise ValueError("PayPal not configured")

    try:
        cached = get_cached_paypal_token()
        if cached:
            return cached
    except redis.RedisError as e:
        logger.warning(f"PayPal token cache unavailable: {e}")

    with _client() as client:
        response = client.post(
            PAYPAL_TOKEN_URL,
            data={"grant_type": "client_credentials"},
            auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
            headers={"Accept": "application/json"},
        )
    if response.status_code != 200:
        raise PayPalAPIError(f"PayPal token request failed: {_error_message(response)}", response.status_code)

    data = response.json()
    token = data.get("access_token")
    if not token:
        raise PayPalAPIError("PayPal token response missing access_token")

    try:
        set_cached_paypal_token(token, int(data.get("expires_in", 0)) - TOKEN_EXPIRY_MARGIN)
    except redis.RedisError as e:
        logger.warning(f"Could not cache PayPal token: {e}")
    return token


def _auth_headers() -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {get_access_token()}",
        "Content-Type": "application/json",
    }


def create_order(event: Event, payment: Payment) -> Dict[str, Optional[str]]:
    """Create a PayPal order (intent CAPTURE) for a pending payment.

    Returns:
        Dict with the order ``id`` and buyer ``approve_url``

    Raises:
        PayPalAPIError: If PayPal rejects the order
    """
    body = {
        "intent": "CAPTURE",
        "purchase_units": [{
            "reference_id": str(payment.id),
            "custom_id": str(payment.id),
            "description": event.name[:127],
            "amount": {
                "currency_code": settings.CURRENCY.upper(),
                "value": format_amount(payment.total),
            },
        }],
        "application_context": {
            "return_url": f"{settings.FRONTEND_URL}{CHECKOUT_SUCCESS_PATH}",
            "cancel_url": f"{settings.FRONTEND_URL}{CHECKOUT_CANCEL_PATH}",
        },
    }

    with _client() as client:
        response = client.post(PAYPAL_ORDERS_URL, json=body, headers=_auth_headers())
    if response.status_code not in (200, 201):
        raise PayPalAPIError(f"PayPal order creation failed: {_error_message(response)}", response.status_code)

    order = response.json()
    order_id = order.get("id")
    if not order_id:
        raise PayPalAPIError("PayPal order response missing id")

    approve_url = None
    for link in order.get("links", []):
        if link.get("rel") in ("approve", "payer-action"):
            approve_url = link.get("href")
            break

    logger.info(f"Created PayPal order {order_id} for payment {payment.id}")
    return {"id": order_id, "approve_url": approve_url}


def capture_order(order_id: str) -> Dict[str, Any]:
    """Capture an approved order. An already-captured order is not an error."""
    with _client() as client:
        response = client.post(f"{PAYPAL_ORDERS_URL}/{order_id}/capture", headers=_auth_headers())

    if response.status_code in (200, 201):
        logger.info(f"Captured PayPal order {order_id}")
        return response.json()

    if response.status_code == 422 and "ORDER_ALREADY_CAPTURED" in response.text:
        logger.info(f"PayPal order {order_id} already captured")
        return {"id": order_id, "status": "COMPLETED"}

    raise PayPalAPIError(f"PayPal capture failed for order {order_id}: {_error_message(response)}", response.status_code)


def verify_webhook_signature(headers: Mapping[str, str], event_body: dict) -> bool:
    """Verify a PayPal webhook delivery through the verify-webhook-signature API.

    Without a PAYPAL_WEBHOOK_ID, deliveries are accepted unverified outside
    production and rejected in production.
    """
    if not settings.PAYPAL_WEBHOOK_ID:
        if settings.is_production:
            logger.error("PAYPAL_WEBHOOK_ID not configured, rejecting PayPal webhook")
            return False
        return True

    lowered = {k.lower(): v for k, v in headers.items()}
    body = {field: lowered.get(header) for field, header in PAYPAL_SIGNATURE_HEADERS.items()}
    if not all(body.values()):
        logger.warning("PayPal webhook missing transmission headers")
        return False
    body["webhook_id"] = settings.PAYPAL_WEBHOOK_ID
    body["webhook_event"] = event_body

    with _client() as client:
        response = client.post(PAYPAL_VERIFY_WEBHOOK_URL, json=body, headers=_auth_headers())
    if response.status_code != 200:
        raise PayPalAPIError(f"PayPal signature verification call failed: {_error_message(response)}", response.status_code)

    return response.json().get("verification_status") == "SUCCESS"
