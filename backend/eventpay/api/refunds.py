"""Refund request API routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException

from eventpay.core.errors import Err, to_http_exception
from eventpay.core.security import require_auth, require_csrf
from eventpay.db.session import get_store
from eventpay.db.store import PaymentStore
from eventpay.models import User
from eventpay.schemas.refunds import RefundDecision, RefundRequestCreate
from eventpay.services.refund_service import (
    list_refund_requests, list_user_refund_requests, process_refund_request, request_refund
)

router = APIRouter(prefix="/refunds", tags=["refunds"])
logger = logging.getLogger(__name__)


def require_admin(user_id: int = Depends(require_csrf), store: PaymentStore = Depends(get_store)) -> User:
    """Dependency: Require admin role"""
    user = store.get_user(user_id)
    if not user or not user.is_admin:
        raise HTTPException(403, "Admin access required")
    return user


def require_admin_get(user_id: int = Depends(require_auth), store: PaymentStore = Depends(get_store)) -> User:
    """Dependency: Require admin role (for GET requests - no CSRF required)"""
    user = store.get_user(user_id)
    if not user or not user.is_admin:
        raise HTTPException(403, "Admin access required")
    return user


def _raise_for(error):
    # Business rule violations are bad requests, not unprocessable bodies
    status_code = 400 if error.http_status == 422 else None
    raise to_http_exception(error, status_code)


@router.post("", status_code=201)
def create_refund_request(
    request_data: RefundRequestCreate,
    user_id: int = Depends(require_csrf),
    store: PaymentStore = Depends(get_store)
):
    """Request a refund for one of the current user's paid reservations"""
    result = request_refund(user_id, request_data.operation_id, request_data.amount, request_data.reason, store)
    if isinstance(result, Err):
        logger.info(f"Refund request rejected for user {user_id}, reservation {request_data.operation_id}: {result.error}")
        _raise_for(result.error)
    return result.value


@router.get("")
def get_my_refund_requests(user_id: int = Depends(require_auth), store: PaymentStore = Depends(get_store)):
    """List the current user's refund requests"""
    return {"refund_requests": list_user_refund_requests(user_id, store)}


@router.get("/all")
def get_all_refund_requests(
    admin_user: User = Depends(require_admin_get),
    store: PaymentStore = Depends(get_store)
):
    """List every refund request (admin only)"""
    return {"refund_requests": list_refund_requests(store)}


@router.post("/{refund_id}/process")
def decide_refund_request(
    refund_id: int,
    request_data: RefundDecision,
    admin_user: User = Depends(require_admin),
    store: PaymentStore = Depends(get_store)
):
    """Approve or refuse a refund request (admin only)"""
    result = process_refund_request(
        refund_id, request_data.status, admin_user.id, store, admin_comment=request_data.admin_comment
    )
    if isinstance(result, Err):
        logger.info(f"Processing of refund request {refund_id} rejected: {result.error}")
        _raise_for(result.error)
    return result.value
