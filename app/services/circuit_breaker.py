"""
Named pybreaker circuit breakers whose state lives in Redis, so every API
worker sees the same open/closed state for an outbound dependency (SMTP).
"""
import logging
from datetime import datetime
from typing import Iterable

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state

logger = logging.getLogger("circuit_breaker")

# gauge values
_STATE_VALUES = {
    pybreaker.STATE_CLOSED: 0,
    pybreaker.STATE_HALF_OPEN: 1,
    pybreaker.STATE_OPEN: 2,
}


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Keys: cb:<name>:state, cb:<name>:failures, cb:<name>:successes, cb:<name>:opened_at."""

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self._name = name
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)

    def _key(self, field: str) -> str:
        return f"cb:{self._name}:{field}"

    @property
    def _ttl(self) -> int:
        # outlives one open period so a half-open probe still finds the state
        return settings.cb_open_seconds * 2

    def _read_int(self, field: str) -> int:
        raw = self.client.get(self._key(field))
        return int(raw) if raw else 0

    def _bump(self, field: str) -> None:
        key = self._key(field)
        self.client.incr(key)
        self.client.expire(key, self._ttl)

    @property
    def state(self) -> str:
        return self.client.get(self._key("state")) or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self.client.set(self._key("state"), value, ex=self._ttl)
        circuit_breaker_state.labels(name=self._name).set(_STATE_VALUES.get(value, 0))

    @property
    def counter(self) -> int:
        return self._read_int("failures")

    def increment_counter(self) -> None:
        self._bump("failures")

    def reset_counter(self) -> None:
        self.client.delete(self._key("failures"))

    @property
    def success_counter(self) -> int:
        return self._read_int("successes")

    def increment_success_counter(self) -> None:
        self._bump("successes")

    def reset_success_counter(self) -> None:
        self.client.delete(self._key("successes"))

    @property
    def opened_at(self) -> datetime | None:
        raw = self.client.get(self._key("opened_at"))
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self.client.set(self._key("opened_at"), value.isoformat(), ex=self._ttl)


class BreakerLogListener(pybreaker.CircuitBreakerListener):
    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": getattr(new_state, "name", str(new_state)),
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning("circuit_breaker_failure", extra={"breaker_name": self.name, "error": type(exc).__name__})


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    exclude: Iterable[type[BaseException]] = (),
) -> pybreaker.CircuitBreaker:
    """
    Breaker registered under `name`, created on first use (no Redis I/O at import).
    Exceptions in `exclude` pass through without counting as failures; they are
    fixed at creation and ignored on later lookups.
    """
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            exclude=list(exclude),
            state_storage=RedisCircuitBreakerStorage(name),
            listeners=[BreakerLogListener(name)],
            name=name,
        )
        _breakers[name] = breaker
    return breaker
