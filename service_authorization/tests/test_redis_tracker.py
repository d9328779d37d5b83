"""
Unit tests for cross-tenant attempt tracking.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from shared.metrics import MetricsCollector
from service_authorization.app.security.redis_tracker import CrossTenantTracker


class TestCrossTenantTracker:
    """Test cases for CrossTenantTracker."""

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("authorization")

    @pytest.fixture
    def tracker(self, metrics):
        """Create tracker with a mocked Redis client."""
        tracker = CrossTenantTracker("redis://localhost:6379/0", threshold=3, window_seconds=60, metrics=metrics)
        tracker.redis = AsyncMock()
        return tracker

    @pytest.mark.asyncio
    async def test_first_attempt_starts_window(self, tracker):
        """Test that the first attempt sets the window expiry."""
        tracker.redis.incr.return_value = 1

        count = await tracker.record_attempt("user-1", "tenant-1", "tenant-2", "timesheet")

        assert count == 1
        tracker.redis.expire.assert_awaited_once_with("authz:cross_tenant:user-1", 60)

    @pytest.mark.asyncio
    async def test_later_attempts_keep_window(self, tracker):
        """Test that the window is not extended."""
        tracker.redis.incr.return_value = 2

        await tracker.record_attempt("user-1", "tenant-1", "tenant-2", "timesheet")

        tracker.redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_threshold_raises_alert(self, tracker, metrics):
        """Test probing alert at the threshold."""
        tracker.logger = MagicMock()
        tracker.redis.incr.return_value = 3

        await tracker.record_attempt("user-1", "tenant-1", "tenant-2", "expense")

        tracker.logger.warning.assert_called_once()
        assert tracker.logger.warning.call_args.kwargs["attempts"] == 3
        assert metrics.registry.get_sample_value("cross_tenant_alerts_total") == 1.0

    @pytest.mark.asyncio
    async def test_redis_failure_is_not_fatal(self, tracker):
        """Test that tracking errors never propagate."""
        tracker.redis.incr.side_effect = ConnectionError("redis down")

        assert await tracker.record_attempt("user-1", "tenant-1", "tenant-2", "expense") == 0

    @pytest.mark.asyncio
    async def test_not_started(self):
        """Test tracking before start is a no-op."""
        tracker = CrossTenantTracker("redis://localhost:6379/0")

        assert await tracker.record_attempt("user-1", "tenant-1", "tenant-2", "expense") == 0
        assert await tracker.health_check() is False

    @pytest.mark.asyncio
    async def test_attempts(self, tracker):
        """Test reading the current count."""
        tracker.redis.get.return_value = "4"

        assert await tracker.attempts("user-1") == 4
