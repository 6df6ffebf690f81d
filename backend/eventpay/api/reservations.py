"""Reservation API routes"""
import logging

from fastapi import APIRouter, Depends

from eventpay.core.errors import Err, to_http_exception
from eventpay.core.security import require_auth, require_csrf
from eventpay.db.session import get_store
from eventpay.db.store import PaymentStore
from eventpay.services.reservation_service import cancel_reservation, list_reservations

router = APIRouter(prefix="/reservations", tags=["reservations"])
logger = logging.getLogger(__name__)


@router.get("")
def get_reservations(user_id: int = Depends(require_auth), store: PaymentStore = Depends(get_store)):
    """List the current user's reservations"""
    return list_reservations(user_id, store)


@router.delete("/{operation_id}")
def delete_reservation(
    operation_id: int,
    user_id: int = Depends(require_csrf),
    store: PaymentStore = Depends(get_store)
):
    """Cancel one of the current user's reservations"""
    result = cancel_reservation(user_id, operation_id, store)
    if isinstance(result, Err):
        logger.info(f"Cancellation of reservation {operation_id} rejected for user {user_id}: {result.error}")
        status_code = 400 if result.error.http_status == 422 else None
        raise to_http_exception(result.error, status_code)
    return result.value
