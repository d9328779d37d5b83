"""
Redis-backed tracking of cross-tenant access attempts.
"""

from typing import Optional

import redis.asyncio as redis

from shared.logging import get_logger
from shared.errors import AccessLayerException
from shared.metrics import MetricsCollector


class CrossTenantTracker:
    """Counts cross-tenant attempts per actor in a fixed window.

    Purely observational: the decision has already been made when an attempt
    is recorded, and a Redis failure never changes it.
    """

    KEY_PREFIX = "authz:cross_tenant:"

    def __init__(
        self,
        redis_url: str,
        threshold: int = 5,
        window_seconds: int = 300,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.redis_url = redis_url
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.metrics = metrics
        self.logger = get_logger("authorization.security.cross_tenant")
        self.redis: Optional[redis.Redis] = None

    async def start(self):
        """Connect to Redis."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Cross-tenant tracker started")

        except Exception as e:
            self.logger.error("Failed to start cross-tenant tracker", error=str(e))
            raise AccessLayerException("REDIS_START_FAILED", str(e))

    async def stop(self):
        """Disconnect from Redis."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Cross-tenant tracker stopped")

    def _key(self, actor_id: str) -> str:
        return f"{self.KEY_PREFIX}{actor_id}"

    async def record_attempt(self, actor_id: str, actor_tenant_id: str, target_tenant_id: Optional[str], resource: str) -> int:
        """Count one attempt; returns the count in the current window, 0 if untracked."""
        if self.redis is None:
            return 0

        key = self._key(actor_id)
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except Exception as e:
            self.logger.error("Error recording cross-tenant attempt", actor_id=actor_id, error=str(e))
            return 0

        if count == self.threshold:
            self.logger.warning(
                "Cross-tenant probing suspected",
                security_event=True,
                actor_id=actor_id,
                actor_tenant_id=actor_tenant_id,
                target_tenant_id=target_tenant_id,
                resource=resource,
                attempts=count,
                window_seconds=self.window_seconds,
            )
            if self.metrics:
                self.metrics.increment_counter("cross_tenant_alerts_total")

        return count

    async def attempts(self, actor_id: str) -> int:
        if self.redis is None:
            return 0
        value = await self.redis.get(self._key(actor_id))
        return int(value) if value else 0

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except Exception:
            return False
