"""
Attempt throttling for sign-in (per IP) and OTP verification (per IP and per
email). Each scope keeps its own counters; the admin form allows fewer
attempts per window than student sign-in.
"""
import logging

import redis
from starlette.requests import Request

from app.core.config import settings

logger = logging.getLogger("auth")

# otp_verify counters are keyed by IP and by email
SCOPES = ("student", "admin", "otp_verify")


def get_client_ip(request: Request) -> str:
    """X-Forwarded-For is honoured only in production and only from a trusted proxy."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def _client() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


def _key(subject: str, scope: str) -> str:
    if scope not in SCOPES:
        raise ValueError(f"Unknown throttle scope: {scope}")
    return f"login_attempts:{scope}:{subject}"


def _max_attempts(scope: str) -> int:
    if scope == "admin":
        return settings.admin_login_rate_limit_attempts
    if scope == "otp_verify":
        return settings.otp_verify_rate_limit_attempts
    return settings.login_rate_limit_attempts


def check_login_rate_limit(subject: str, scope: str = "student") -> bool:
    """
    Count one attempt and report whether it may proceed.
    Redis outages let the attempt through.
    """
    key = _key(subject, scope)
    try:
        client = _client()
        attempts = client.incr(key)
        if attempts == 1:
            client.expire(key, settings.login_rate_limit_window_seconds)
    except redis.RedisError as e:
        logger.warning("login_rate_limit_redis_error", extra={"error": str(e)})
        return True

    if attempts > _max_attempts(scope):
        who = {"email": subject} if "@" in subject else {"ip": subject}
        logger.warning("login_rate_limited", extra={**who, "attempts": attempts, "status": scope})
        return False
    return True


def retry_after_seconds(subject: str, scope: str = "student") -> int:
    """Seconds until the window resets; the full window when unknown."""
    try:
        ttl = _client().ttl(_key(subject, scope))
    except redis.RedisError:
        ttl = None
    if not ttl or ttl < 0:
        return settings.login_rate_limit_window_seconds
    return int(ttl)


def reset_login_attempts(subject: str, scope: str = "student") -> None:
    try:
        _client().delete(_key(subject, scope))
    except redis.RedisError as e:
        logger.warning("login_rate_limit_reset_failed", extra={"error": str(e)})
