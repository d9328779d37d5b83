"""
Unit tests for the PostgreSQL persistence layer.
"""

import asyncpg
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from shared.errors import AccessLayerException, ExternalServiceError
from service_authorization.app.persistence.postgres import PostgreSQLPersistence
from service_authorization.app.policy.errors import MembershipExists, MembershipNotFound, RecordNotFound, StaleStateError
from service_authorization.app.policy.models import ResourceType, Role


class TestPostgreSQLPersistence:
    """Test cases for PostgreSQLPersistence."""

    @pytest.fixture
    def conn(self):
        """Mock asyncpg connection."""
        return AsyncMock()

    @pytest.fixture
    def persistence(self, conn):
        """Create persistence with a mocked pool."""
        persistence = PostgreSQLPersistence("postgres://localhost:5432/tracker")
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        pool.close = AsyncMock()
        persistence.pool = pool
        return persistence

    @pytest.mark.asyncio
    async def test_start_failure_raises(self):
        """Test that an unreachable database fails startup."""
        persistence = PostgreSQLPersistence("postgres://nowhere:5432/tracker")

        with patch("asyncpg.create_pool", AsyncMock(side_effect=OSError("connection refused"))):
            with pytest.raises(AccessLayerException) as exc_info:
                await persistence.start()

        assert exc_info.value.code == "POSTGRES_START_FAILED"

    @pytest.mark.asyncio
    async def test_get_membership(self, persistence, conn):
        """Test loading a membership."""
        conn.fetchrow.return_value = {"tenant_id": "tenant-1", "actor_id": "user-1", "role": "contributor"}

        actor = await persistence.get_membership("tenant-1", "user-1")

        assert actor.id == "user-1"
        assert actor.tenant_id == "tenant-1"
        assert actor.role is Role.CONTRIBUTOR

    @pytest.mark.asyncio
    async def test_get_membership_missing(self, persistence, conn):
        """Test a caller with no membership."""
        conn.fetchrow.return_value = None

        assert await persistence.get_membership("tenant-1", "user-1") is None

    @pytest.mark.asyncio
    async def test_get_membership_reads_every_time(self, persistence, conn):
        """Test that a role change is seen on the next read."""
        conn.fetchrow.side_effect = [
            {"tenant_id": "tenant-1", "actor_id": "user-1", "role": "admin"},
            {"tenant_id": "tenant-1", "actor_id": "user-1", "role": "viewer"},
        ]

        first = await persistence.get_membership("tenant-1", "user-1")
        second = await persistence.get_membership("tenant-1", "user-1")

        assert first.role is Role.ADMIN
        assert second.role is Role.VIEWER
        assert conn.fetchrow.await_count == 2

    @pytest.mark.asyncio
    async def test_get_membership_database_error(self, persistence, conn):
        """Test that a database failure is not mistaken for a missing membership."""
        conn.fetchrow.side_effect = asyncpg.PostgresError("connection lost")

        with pytest.raises(ExternalServiceError):
            await persistence.get_membership("tenant-1", "user-1")

    @pytest.mark.asyncio
    async def test_change_role_missing_member(self, persistence, conn):
        """Test changing the role of a non-member."""
        conn.fetchrow.return_value = None

        with pytest.raises(MembershipNotFound):
            await persistence.change_role("tenant-1", "user-2", Role.VIEWER)

    @pytest.mark.asyncio
    async def test_revoke_missing_member(self, persistence, conn):
        """Test revoking a non-member."""
        conn.execute.return_value = "DELETE 0"

        with pytest.raises(MembershipNotFound):
            await persistence.revoke_membership("tenant-1", "user-2")

    @pytest.mark.asyncio
    async def test_grant_membership(self, persistence, conn):
        """Test adding a member."""
        member = await persistence.grant_membership("tenant-1", "user-2", "finance_customer")

        assert member.role is Role.FINANCE_CUSTOMER
        args = conn.execute.call_args.args
        assert "ON CONFLICT" not in args[0]
        assert args[1:] == ("tenant-1", "user-2", "finance_customer")

    @pytest.mark.asyncio
    async def test_grant_existing_membership_conflicts(self, persistence, conn):
        """Test that granting never overwrites an existing role."""
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(MembershipExists) as exc_info:
            await persistence.grant_membership("tenant-1", "admin-1", "viewer")

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_load_snapshot(self, persistence, conn):
        """Test building a snapshot from a stored record."""
        conn.fetchrow.return_value = {
            "id": "exp-1",
            "tenant_id": "tenant-1",
            "owner_actor_id": "user-1",
            "status": "Submitted",
            "is_chargeable": True,
            "amount": 120,
        }

        snapshot = await persistence.load_snapshot(ResourceType.EXPENSE, "exp-1")

        assert snapshot.tenant_id == "tenant-1"
        assert snapshot.status == "Submitted"
        assert snapshot.is_chargeable is True
        assert snapshot.attributes == {"amount": 120}
        assert "public.expenses" in conn.fetchrow.call_args.args[0]

    @pytest.mark.asyncio
    async def test_load_membership_snapshot(self, persistence, conn):
        """Test that membership snapshots are owned by the member."""
        conn.fetchrow.return_value = {"tenant_id": "tenant-1", "actor_id": "user-2", "role": "viewer"}

        snapshot = await persistence.load_snapshot(ResourceType.TENANT_MEMBERSHIP, "user-2", "tenant-1")

        assert snapshot.owner_actor_id == "user-2"
        assert snapshot.tenant_id == "tenant-1"

    @pytest.mark.asyncio
    async def test_transition_applied(self, persistence, conn):
        """Test a conditional update that finds the expected status."""
        conn.fetchrow.return_value = {"status": "Submitted"}

        status = await persistence.transition_status(ResourceType.TIMESHEET, "ts-1", "tenant-1", "Draft", "Submitted")

        assert status == "Submitted"
        sql, *params = conn.fetchrow.call_args.args
        assert "UPDATE public.timesheets" in sql
        assert "status = $4" in sql
        assert "RETURNING status" in sql
        assert params == ["Submitted", "ts-1", "tenant-1", "Draft"]

    @pytest.mark.asyncio
    async def test_transition_stale(self, persistence, conn):
        """Test that a concurrent change surfaces as stale state."""
        conn.fetchrow.side_effect = [None, {"status": "Validated"}]

        with pytest.raises(StaleStateError) as exc_info:
            await persistence.transition_status(ResourceType.TIMESHEET, "ts-1", "tenant-1", "Submitted", "Rejected")

        assert exc_info.value.details["current_status"] == "Validated"
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_transition_missing_record(self, persistence, conn):
        """Test a transition on a deleted record."""
        conn.fetchrow.side_effect = [None, None]

        with pytest.raises(RecordNotFound):
            await persistence.transition_status(ResourceType.TIMESHEET, "ts-1", "tenant-1", "Draft", "Submitted")

    @pytest.mark.asyncio
    async def test_apply_policies(self, persistence, conn):
        """Test that the migration is executed as one batch."""
        await persistence.apply_policies("BEGIN;\nCOMMIT;\n")

        conn.execute.assert_awaited_once_with("BEGIN;\nCOMMIT;\n")

    @pytest.mark.asyncio
    async def test_health_check(self, persistence, conn):
        """Test database health check."""
        conn.fetchval.return_value = 1

        assert await persistence.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_failure(self, persistence, conn):
        """Test database health check failure."""
        conn.fetchval.side_effect = OSError("connection reset")

        assert await persistence.health_check() is False
