"""Payment provider webhook routes"""
import logging

from fastapi import APIRouter, Depends, Request

from eventpay.core.errors import Err, to_http_exception
from eventpay.db.session import get_store
from eventpay.db.store import PaymentStore
from eventpay.services.webhook_service import process_paypal_webhook, process_stripe_webhook

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)


async def get_raw_body(request: Request) -> bytes:
    """Dependency: raw request body, unparsed for signature verification"""
    return await request.body()


# Plain def routes run in the threadpool; processing makes blocking DB and PayPal calls

@router.post("/stripe")
def stripe_webhook(
    request: Request,
    payload: bytes = Depends(get_raw_body),
    store: PaymentStore = Depends(get_store)
):
    """Handle Stripe webhook events"""
    sig_header = request.headers.get("stripe-signature")

    try:
        result = process_stripe_webhook(payload, sig_header, store)
    except Exception as e:
        # Unexpected error - log but return 200 to prevent retries
        logger.error(f"Unexpected error processing Stripe webhook: {e}", exc_info=True)
        return {"status": "error", "message": "Webhook processing failed"}

    if isinstance(result, Err):
        raise to_http_exception(result.error, 400)
    return result.value


@router.post("/paypal")
def paypal_webhook(
    request: Request,
    payload: bytes = Depends(get_raw_body),
    store: PaymentStore = Depends(get_store)
):
    """Handle PayPal webhook events"""
    try:
        result = process_paypal_webhook(payload, request.headers, store)
    except Exception as e:
        logger.error(f"Unexpected error processing PayPal webhook: {e}", exc_info=True)
        return {"status": "error", "message": "Webhook processing failed"}

    if isinstance(result, Err):
        raise to_http_exception(result.error, 400)
    return result.value
