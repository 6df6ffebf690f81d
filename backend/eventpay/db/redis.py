"""Redis client for sessions, CSRF tokens, rate limiting and provider token caching"""
import redis
import logging
from typing import Optional
from eventpay.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


# Session TTL (30 days)
SESSION_TTL = 30 * 24 * 60 * 60

PAYPAL_TOKEN_KEY = "paypal:access_token"


def get_session(session_id: str) -> Optional[int]:
    """Get user_id from session"""
    key = f"session:{session_id}"
    user_id = get_redis_client().get(key)
    return int(user_id) if user_id else None


def set_csrf_token(session_id: str, token: str) -> None:
    """Store CSRF token in Redis"""
    key = f"csrf:{session_id}"
    get_redis_client().setex(key, SESSION_TTL, token)


def get_csrf_token(session_id: str) -> Optional[str]:
    """Get CSRF token from Redis"""
    key = f"csrf:{session_id}"
    return get_redis_client().get(key)


def increment_rate_limit(identifier: str, window: int) -> int:
    """Increment the fixed-window counter for ``identifier`` and return the new count"""
    key = f"ratelimit:{identifier}"
    client = get_redis_client()
    count = client.incr(key)
    if count == 1:
        client.expire(key, window)
    return int(count)


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Return True if the identifier is still within its rate limit.

    Fails open when Redis is unavailable so an outage does not block payments.
    """
    limit = settings.RATE_LIMIT_STRICT_REQUESTS if strict else settings.RATE_LIMIT_REQUESTS
    scope = "strict" if strict else "normal"
    try:
        count = increment_rate_limit(f"{scope}:{identifier}", settings.RATE_LIMIT_WINDOW)
    except redis.RedisError as e:
        logger.warning(f"Rate limit check skipped, Redis unavailable: {e}")
        return True
    return count <= limit


def get_cached_paypal_token() -> Optional[str]:
    """Get cached PayPal OAuth access token"""
    return get_redis_client().get(PAYPAL_TOKEN_KEY)


def set_cached_paypal_token(token: str, ttl: int) -> None:
    """Cache PayPal OAuth access token for ``ttl`` seconds"""
    if ttl <= 0:
        return
    get_redis_client().setex(PAYPAL_TOKEN_KEY, ttl, token)
