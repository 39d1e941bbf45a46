"""
Purchase-intent rate limit (Redis, shared by every API replica).
"""
import logging

import redis

from app.core.config import settings

logger = logging.getLogger(__name__)


class PurchaseRateLimiter:
    def __init__(self, client: redis.Redis | None = None) -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.limit = settings.purchase_rate_limit
        self.window = settings.purchase_rate_window_seconds

    def allow(self, identity_key: str) -> bool:
        """At most `limit` new gateway orders per `window` seconds per identity."""
        key = f"purchase_rate:{identity_key}"
        try:
            current = self.client.incr(key)
            if current == 1:
                self.client.expire(key, self.window)
            return current <= self.limit
        except redis.RedisError as e:
            logger.warning("purchase_rate_limit_redis_error", extra={"error": str(e)})
            return True  # fail open: Redis outage must not block purchases
