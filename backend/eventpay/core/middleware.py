"""Middleware configuration for FastAPI application"""
import logging
import secrets

import redis
from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from eventpay.core.config import settings
from eventpay.core.logging import security_logger
from eventpay.core.security import (
    get_allowed_origins, get_client_identifier, check_rate_limit,
    validate_origin_referer, log_api_access
)
from eventpay.db.redis import get_csrf_token, set_csrf_token

logger = logging.getLogger(__name__)

# Provider callbacks and probes: no rate limit, no origin check
EXEMPT_PATHS = ("/webhooks/stripe", "/webhooks/paypal", "/health", "/metrics")


def setup_cors_middleware(app):
    """Setup CORS middleware for FastAPI app"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-CSRF-Token"],
    )


def _error_response(request: Request, status_code: int, message: str) -> Response:
    response = JSONResponse(status_code=status_code, content={"error": message})
    origin = request.headers.get("Origin")
    if origin and origin in get_allowed_origins():
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
    return response


def _issue_csrf_token(session_id: str, response: Response) -> None:
    try:
        csrf_token = get_csrf_token(session_id)
        if not csrf_token:
            csrf_token = secrets.token_urlsafe(32)
            set_csrf_token(session_id, csrf_token)
    except redis.RedisError as e:
        security_logger.warning(f"Could not issue CSRF token: {e}")
        return

    response.headers["X-CSRF-Token"] = csrf_token
    response.set_cookie(
        key="csrf_token_client",
        value=csrf_token,
        httponly=False,  # read by the frontend
        secure=settings.is_production,
        samesite="lax",
        path="/"
    )


async def security_middleware(request: Request, call_next):
    """Middleware for rate limiting, origin checks and API access logging"""
    session_id = None
    status_code = 500
    error = None

    try:
        path = request.url.path
        is_exempt = path in EXEMPT_PATHS
        session_id = request.cookies.get("session_id")

        if not is_exempt:
            identifier = get_client_identifier(request, session_id)
            is_state_changing = request.method in ["POST", "PATCH", "DELETE", "PUT"]
            if not check_rate_limit(identifier, strict=is_state_changing):
                status_code = 429
                error = "Rate limit exceeded"
                security_logger.warning(f"Rate limit exceeded - Identifier: {identifier}, Path: {path}")
                return _error_response(request, 429, "Rate limit exceeded. Please try again later.")

            if is_state_changing and not validate_origin_referer(request):
                status_code = 403
                error = "Invalid origin or referer"
                security_logger.warning(f"Origin/Referer validation failed - Path: {path}")
                return _error_response(request, 403, "Invalid origin or referer")

        response = await call_next(request)
        status_code = response.status_code

        if session_id and not is_exempt and status_code < 400:
            _issue_csrf_token(session_id, response)

        return response

    except Exception as e:
        error = str(e)
        security_logger.error(f"Security middleware error: {error}", exc_info=True)
        raise
    finally:
        log_api_access(request, session_id, status_code, error)


async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )
