"""
PostgreSQL persistence layer for the Authorization Service.
"""

from typing import Any, Dict, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException, ExternalServiceError
from ..policy.errors import MembershipExists, MembershipNotFound, RecordNotFound, StaleStateError
from ..policy.models import Actor, ResourceType, Role, TargetSnapshot


class PostgreSQLPersistence:
    """Memberships, record snapshots and atomic status transitions.

    Memberships are read on every call and never cached, so a role change or
    revocation takes effect on the next check.
    """

    def __init__(self, dsn: str, schema: str = "public", min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.schema = schema
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("authorization.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except Exception as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise AccessLayerException("POSTGRES_START_FAILED", str(e))

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    def _table(self, resource: ResourceType) -> str:
        return f"{self.schema}.{resource.table}"

    async def _create_tables(self):
        """Create the membership table."""
        roles = ", ".join(f"'{role}'" for role in Role.values())
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.schema}.tenant_memberships (
                    tenant_id TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    role TEXT NOT NULL CHECK (role IN ({roles})),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    PRIMARY KEY (tenant_id, actor_id)
                );
            """)

            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_tenant_memberships_actor
                ON {self.schema}.tenant_memberships(actor_id);
            """)

    async def get_membership(self, tenant_id: str, actor_id: str) -> Optional[Actor]:
        """Current membership of ``actor_id`` in ``tenant_id``."""
        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    SELECT tenant_id, actor_id, role FROM {self.schema}.tenant_memberships
                    WHERE tenant_id = $1 AND actor_id = $2
                """, tenant_id, actor_id)
        except asyncpg.PostgresError as e:
            self.logger.error("Error loading membership", tenant_id=tenant_id, actor_id=actor_id, error=str(e))
            raise ExternalServiceError("postgres", str(e))

        if not row:
            return None
        return Actor(id=row["actor_id"], tenant_id=row["tenant_id"], role=Role.parse(row["role"]))

    async def list_memberships(self, tenant_id: str) -> List[Dict[str, Any]]:
        """All memberships of a tenant."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"""
                SELECT tenant_id, actor_id, role FROM {self.schema}.tenant_memberships
                WHERE tenant_id = $1
                ORDER BY created_at ASC
            """, tenant_id)
        return [dict(row) for row in rows]

    async def grant_membership(self, tenant_id: str, actor_id: str, role: Role) -> Actor:
        """Add ``actor_id`` to the tenant; an existing membership is left untouched."""
        role = Role.parse(role)
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO {self.schema}.tenant_memberships (tenant_id, actor_id, role)
                    VALUES ($1, $2, $3)
                """, tenant_id, actor_id, role.value)
        except asyncpg.UniqueViolationError:
            raise MembershipExists(tenant_id, actor_id) from None

        self.logger.info("Membership granted", tenant_id=tenant_id, member_id=actor_id, role=role.value)
        return Actor(id=actor_id, tenant_id=tenant_id, role=role)

    async def change_role(self, tenant_id: str, actor_id: str, role: Role) -> Actor:
        """Change an existing member's role."""
        role = Role.parse(role)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE {self.schema}.tenant_memberships
                SET role = $3, updated_at = NOW()
                WHERE tenant_id = $1 AND actor_id = $2
                RETURNING actor_id
            """, tenant_id, actor_id, role.value)

        if not row:
            raise MembershipNotFound(tenant_id, actor_id)

        self.logger.info("Membership role changed", tenant_id=tenant_id, member_id=actor_id, role=role.value)
        return Actor(id=actor_id, tenant_id=tenant_id, role=role)

    async def revoke_membership(self, tenant_id: str, actor_id: str):
        """Remove ``actor_id`` from the tenant."""
        async with self.pool.acquire() as conn:
            result = await conn.execute(f"""
                DELETE FROM {self.schema}.tenant_memberships
                WHERE tenant_id = $1 AND actor_id = $2
            """, tenant_id, actor_id)

        if result == "DELETE 0":
            raise MembershipNotFound(tenant_id, actor_id)
        self.logger.info("Membership revoked", tenant_id=tenant_id, member_id=actor_id)

    async def load_snapshot(self, resource: ResourceType, record_id: str, tenant_id: Optional[str] = None) -> Optional[TargetSnapshot]:
        """Fields the object rules read, for one stored record."""
        resource = ResourceType.parse(resource)
        if resource is ResourceType.TENANT_MEMBERSHIP:
            if tenant_id is None:
                return None
            member = await self.get_membership(tenant_id, record_id)
            if member is None:
                return None
            return TargetSnapshot(tenant_id=member.tenant_id, owner_actor_id=member.id)

        try:
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(f"""
                    SELECT * FROM {self._table(resource)} WHERE id::text = $1
                """, record_id)
        except asyncpg.PostgresError as e:
            self.logger.error("Error loading record", resource=resource.value, record_id=record_id, error=str(e))
            raise ExternalServiceError("postgres", str(e))

        if not row:
            return None

        data = dict(row)
        data.pop("id", None)
        for field in ("tenant_id", "owner_actor_id"):
            if data.get(field) is not None:
                data[field] = str(data[field])
        return TargetSnapshot.from_mapping(data)

    async def transition_status(
        self,
        resource: ResourceType,
        record_id: str,
        tenant_id: str,
        expected_status: Optional[str],
        new_status: str,
    ) -> str:
        """Move a record to ``new_status`` only if it is still in ``expected_status``.

        The check and the write are one conditional UPDATE, so two concurrent
        transitions from the same observed state cannot both succeed.
        """
        resource = ResourceType.parse(resource)
        table = self._table(resource)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"""
                UPDATE {table}
                SET status = $1
                WHERE id::text = $2 AND tenant_id::text = $3 AND status = $4
                RETURNING status
            """, new_status, record_id, tenant_id, expected_status)

            if row:
                self.logger.info(
                    "Status transitioned",
                    resource=resource.value,
                    record_id=record_id,
                    from_status=expected_status,
                    to_status=new_status,
                )
                return row["status"]

            current = await conn.fetchrow(f"""
                SELECT status FROM {table} WHERE id::text = $1 AND tenant_id::text = $2
            """, record_id, tenant_id)

        if current is None:
            raise RecordNotFound(resource.value, record_id)

        self.logger.warning(
            "Stale status transition rejected",
            resource=resource.value,
            record_id=record_id,
            expected_status=expected_status,
            current_status=current["status"],
        )
        raise StaleStateError(resource.value, record_id, expected_status, current["status"])

    async def apply_policies(self, migration_sql: str):
        """Install compiled row-level-security policies.

        The script carries its own BEGIN/COMMIT and is sent as a single
        simple-protocol batch.
        """
        async with self.pool.acquire() as conn:
            await conn.execute(migration_sql)
        self.logger.info("Storage policies applied")

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
