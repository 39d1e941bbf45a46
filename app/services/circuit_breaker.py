"""
Circuit breakers (pybreaker) for outbound gateway calls.
State lives in one Redis hash per breaker so every API replica trips and recovers together.
"""
import logging
from datetime import datetime

import pybreaker
import redis

from app.core.config import settings
from app.utils.metrics import circuit_breaker_state

logger = logging.getLogger("circuit_breaker")


class RedisCircuitBreakerStorage(pybreaker.CircuitBreakerStorage):
    """Hash `cb:<name>` with fields state / failures / successes / opened_at."""

    def __init__(self, name: str, client: redis.Redis | None = None) -> None:
        super().__init__(name)
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.key = f"cb:{name}"
        self.ttl = settings.cb_open_seconds * 2

    def _get(self, field: str) -> str | None:
        return self.client.hget(self.key, field)

    def _set(self, field: str, value) -> None:
        pipe = self.client.pipeline()
        pipe.hset(self.key, field, value)
        pipe.expire(self.key, self.ttl)
        pipe.execute()

    def _incr(self, field: str) -> None:
        pipe = self.client.pipeline()
        pipe.hincrby(self.key, field, 1)
        pipe.expire(self.key, self.ttl)
        pipe.execute()

    @property
    def state(self) -> str:
        return self._get("state") or pybreaker.STATE_CLOSED

    @state.setter
    def state(self, value: str) -> None:
        self._set("state", value)

    @property
    def counter(self) -> int:
        return int(self._get("failures") or 0)

    def increment_counter(self) -> None:
        self._incr("failures")

    def reset_counter(self) -> None:
        self._set("failures", 0)

    @property
    def success_counter(self) -> int:
        return int(self._get("successes") or 0)

    def increment_success_counter(self) -> None:
        self._incr("successes")

    def reset_success_counter(self) -> None:
        self._set("successes", 0)

    @property
    def opened_at(self) -> datetime | None:
        raw = self._get("opened_at")
        return datetime.fromisoformat(raw) if raw else None

    @opened_at.setter
    def opened_at(self, value: datetime) -> None:
        self._set("opened_at", value.isoformat())


class GatewayBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs transitions and failures; mirrors open/closed into the Prometheus gauge."""

    def __init__(self, name: str) -> None:
        self.name = name

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state, new_state) -> None:
        new_name = getattr(new_state, "name", str(new_state))
        circuit_breaker_state.labels(name=self.name).set(1 if new_name == pybreaker.STATE_OPEN else 0)
        logger.warning(
            "circuit_breaker_state_change",
            extra={
                "breaker_name": self.name,
                "old_state": getattr(old_state, "name", str(old_state)),
                "new_state": new_name,
            },
        )

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.warning("circuit_breaker_failure", extra={"breaker_name": self.name, "error": type(exc).__name__})


_breakers: dict[str, pybreaker.CircuitBreaker] = {}


def get_circuit_breaker(name: str) -> pybreaker.CircuitBreaker:
    """Shared breaker per name, created on first use (construction reads Redis)."""
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = pybreaker.CircuitBreaker(
            fail_max=settings.cb_failure_threshold,
            reset_timeout=settings.cb_open_seconds,
            state_storage=RedisCircuitBreakerStorage(name),
            listeners=[GatewayBreakerListener(name)],
            name=name,
        )
        _breakers[name] = breaker
    return breaker
