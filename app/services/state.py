"""
Registration flow state in Redis, one signed JSON dict per email.
Keys carry a digest of the email rather than the address itself; values are
signed with itsdangerous so a tampered or stale entry reads as empty.
"""
import hashlib
from typing import Any

import redis
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings


class StateStore:
    def __init__(
        self,
        namespace: str = "registration",
        client: redis.Redis | None = None,
        ttl_seconds: int | None = None,
    ) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.namespace = namespace
        self.serializer = URLSafeTimedSerializer(
            settings.registration_state_secret,
            salt=f"{namespace}-state",
        )
        self.ttl = ttl_seconds or settings.registration_state_ttl

    def key_for(self, subject: str) -> str:
        digest = hashlib.sha256(subject.encode("utf-8")).hexdigest()[:32]
        return f"state:{self.namespace}:{digest}"

    def get(self, subject: str) -> dict[str, Any]:
        raw = self.client.get(self.key_for(subject))
        if not raw:
            return {}
        try:
            data = self.serializer.loads(raw, max_age=self.ttl)
        except (BadSignature, SignatureExpired):
            self.clear(subject)
            return {}
        return data if isinstance(data, dict) else {}

    def set(self, subject: str, payload: dict[str, Any]) -> None:
        """Replaces the whole entry and restarts its TTL."""
        self.client.setex(self.key_for(subject), self.ttl, self.serializer.dumps(payload))

    def update(self, subject: str, changes: dict[str, Any]) -> dict[str, Any]:
        current = self.get(subject)
        current.update(changes)
        self.set(subject, current)
        return current

    def clear(self, subject: str) -> None:
        self.client.delete(self.key_for(subject))
