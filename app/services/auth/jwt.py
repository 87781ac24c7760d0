"""
Session tokens (JWT, python-jose) and the Redis denylist used by sign-out.
"""
import logging
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import redis
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import AuthenticationError

logger = logging.getLogger("auth")


def create_access_token(subject: str, extra_claims: dict | None = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": subject,
        "jti": uuid4().hex,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.access_token_ttl_seconds)).timestamp()),
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    """Signature + expiry check. Raises AuthenticationError."""
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise AuthenticationError("Session expired. Please sign in again.") from e
    if not claims.get("sub") or not claims.get("jti"):
        raise AuthenticationError("Session expired. Please sign in again.")
    return claims


class TokenDenylist:
    """Revoked jti values, kept until the token would have expired anyway."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    def _key(self, jti: str) -> str:
        return f"revoked_token:{jti}"

    def revoke(self, jti: str, expires_at: int) -> None:
        ttl = max(int(expires_at - datetime.now(timezone.utc).timestamp()), 1)
        self.client.setex(self._key(jti), ttl, "1")

    def is_revoked(self, jti: str) -> bool:
        try:
            return bool(self.client.exists(self._key(jti)))
        except redis.RedisError as e:
            # Fail closed: a revoked device-conflict session must not slip through.
            logger.warning("token_denylist_redis_error", extra={"error": str(e)})
            return True
