"""
Authorization service for the Tracker Access Layer.
"""

from typing import Optional

from fastapi import Query
from fastapi.responses import PlainTextResponse

from shared.base_service import BaseService
from shared.errors import AuthorizationError, ValidationError
from shared.logging import set_actor_context

from .policy.compiler import compile_storage_policies, render_migration
from .policy.consistency import check_consistency
from .policy.definitions import TRANSITIONS
from .policy.errors import MembershipNotFound, PolicyConfigurationError, RecordNotFound, StaleStateError
from .policy.evaluator import PolicyEngine
from .policy.matrix import get_matrix
from .policy.models import Action, Actor, Decision, DecisionReason, ResourceType, Role, TargetSnapshot
from .persistence.postgres import PostgreSQLPersistence
from .security.redis_tracker import CrossTenantTracker
from .schemas import (
    AuthorizeRequest,
    DecisionResponse,
    MembershipCreateRequest,
    MembershipListResponse,
    MembershipResponse,
    MembershipUpdateRequest,
    StoragePoliciesResponse,
    TenantCreationRequest,
    TransitionRequest,
    TransitionResponse,
)


class AuthorizationService(BaseService):
    """Authorization service implementation."""

    def __init__(self):
        super().__init__("authorization", 8010)

        # Initialize components
        self.matrix = get_matrix()
        self.engine = PolicyEngine(self.matrix, self.metrics)
        self._divergences = None
        self.persistence = PostgreSQLPersistence(
            self.config.postgres_dsn,
            schema=self.config.policy_schema,
            min_size=self.config.postgres_min_pool,
            max_size=self.config.postgres_max_pool,
        )
        self.tracker = CrossTenantTracker(
            self.config.redis_url,
            threshold=self.config.cross_tenant_alert_threshold,
            window_seconds=self.config.cross_tenant_window_seconds,
            metrics=self.metrics,
        )

        self._setup_authorization_routes()

    def compile_policies(self):
        return compile_storage_policies(
            self.matrix,
            actor_expression=self.config.policy_actor_expression,
            schema=self.config.policy_schema,
            role_name=self.config.policy_role_name,
        )

    def verify_policies(self):
        """Run the tier consistency check once per process; the matrix is immutable."""
        if self._divergences is None:
            self._divergences = check_consistency(self.matrix, self.compile_policies())
        return self._divergences

    def render_policies(self) -> str:
        """Compiled migration, refused when the tiers have diverged."""
        policies = self.compile_policies()
        divergences = self.verify_policies()
        if divergences:
            raise PolicyConfigurationError(
                "Application tier allows what the data tier denies",
                {"divergences": [d.describe() for d in divergences[:20]], "total": len(divergences)},
            )
        return render_migration(
            policies,
            schema=self.config.policy_schema,
            actor_expression=self.config.policy_actor_expression,
        )

    async def decide(self, actor: Actor, resource, action, target: Optional[TargetSnapshot] = None) -> Decision:
        """Evaluate a check and record cross-tenant attempts."""
        set_actor_context(actor.id, actor.tenant_id)
        decision = self.engine.decide(actor, resource, action, target)
        if decision.reason is DecisionReason.CROSS_TENANT_ACCESS:
            await self.tracker.record_attempt(
                actor.id,
                actor.tenant_id,
                target.tenant_id if target else None,
                decision.resource.value,
            )
        return decision

    async def _member(self, tenant_id: str, actor_id: str, acting_as: Optional[str] = None) -> Actor:
        """Fresh membership of the acting caller."""
        member = await self.persistence.get_membership(tenant_id, actor_id)
        if member is None:
            raise MembershipNotFound(tenant_id, actor_id)
        if acting_as is not None:
            member = Actor(id=member.id, tenant_id=member.tenant_id, role=member.role, acting_as=acting_as)
        return member

    async def _require(self, actor: Actor, resource, action, target: Optional[TargetSnapshot] = None) -> Decision:
        decision = await self.decide(actor, resource, action, target)
        if not decision.allowed:
            raise AuthorizationError(
                f"{decision.role.value} may not {decision.action} this {decision.resource.value}",
                decision.audit_fields(),
            )
        return decision

    def _setup_authorization_routes(self):
        """Set up authorization-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "authorization",
                "message": "Tracker Access Layer - Authorization Service",
                "version": "1.0.0",
                "capabilities": ["capability_matrix", "object_rules", "storage_policies", "atomic_transitions"]
            }

        @self.app.post("/authorize", response_model=DecisionResponse)
        async def authorize(request: AuthorizeRequest):
            """Decide whether an actor may perform an action."""
            actor = request.actor.to_actor()
            target = request.target.to_snapshot() if request.target else None
            decision = await self.decide(actor, request.resource, request.action, target)
            return DecisionResponse.from_decision(decision)

        @self.app.post("/authorize/tenant-creation")
        async def authorize_tenant_creation(request: TenantCreationRequest):
            """Platform-level check for creating a new tenant."""
            return {"allowed": self.engine.can_create_tenant(request.actor.to_actor())}

        @self.app.get("/policies/matrix")
        async def get_matrix_dump(role: Optional[str] = Query(None, description="Limit the dump to one role")):
            """Capability matrix dump."""
            if role is not None:
                parsed = Role.parse(role)
                return {"roles": {parsed.value: self.matrix.for_role(parsed)}}
            return {"roles": {r.value: self.matrix.for_role(r) for r in Role}}

        @self.app.get("/policies/storage", response_class=PlainTextResponse)
        async def get_storage_policies():
            """Compiled row-level-security migration."""
            return self.render_policies()

        @self.app.post("/policies/apply", response_model=StoragePoliciesResponse)
        async def apply_storage_policies():
            """Install the compiled policies in the database."""
            sql = self.render_policies()
            await self.persistence.apply_policies(sql)
            policies = len(self.compile_policies())
            self.logger.info("Storage policies applied", policies=policies)
            return StoragePoliciesResponse(policies=policies, sql=sql)

        @self.app.post(
            "/tenants/{tenant_id}/records/{resource}/{record_id}/transitions",
            response_model=TransitionResponse,
        )
        async def transition_record(tenant_id: str, resource: str, record_id: str, request: TransitionRequest):
            """Authorize and apply a status change atomically."""
            resource_type = ResourceType.parse(resource)
            action = Action.lookup(request.action)
            destination = TRANSITIONS.get(resource_type, {}).get(action) if action else None
            if destination is None:
                raise ValidationError(
                    f"{request.action!r} does not change the status of a {resource_type.value}",
                    {"resource": resource_type.value, "action": request.action},
                )

            actor = await self._member(tenant_id, request.actor_id, request.acting_as)
            snapshot = await self.persistence.load_snapshot(resource_type, record_id)
            if snapshot is None:
                raise RecordNotFound(resource_type.value, record_id)

            try:
                decision = await self._require(actor, resource_type, action, snapshot)
            except AuthorizationError:
                self.metrics.increment_counter("status_transitions_total", resource=resource_type.value, outcome="denied")
                raise

            try:
                status = await self.persistence.transition_status(
                    resource_type, record_id, tenant_id, snapshot.status, destination
                )
            except StaleStateError:
                self.metrics.increment_counter("status_transitions_total", resource=resource_type.value, outcome="stale")
                raise

            self.metrics.increment_counter("status_transitions_total", resource=resource_type.value, outcome="applied")
            return TransitionResponse(
                resource=resource_type.value,
                record_id=record_id,
                from_status=snapshot.status,
                status=status,
                decision=DecisionResponse.from_decision(decision),
            )

        @self.app.get("/tenants/{tenant_id}/memberships", response_model=MembershipListResponse)
        async def list_memberships(tenant_id: str, actor_id: str = Query(..., description="Member performing the lookup")):
            """List tenant members."""
            actor = await self._member(tenant_id, actor_id)
            await self._require(actor, ResourceType.TENANT_MEMBERSHIP, Action.VIEW, TargetSnapshot(tenant_id=tenant_id))
            rows = await self.persistence.list_memberships(tenant_id)
            return MembershipListResponse(
                memberships=[MembershipResponse(**row) for row in rows],
                total=len(rows),
            )

        @self.app.post("/tenants/{tenant_id}/memberships", response_model=MembershipResponse, status_code=201)
        async def create_membership(tenant_id: str, request: MembershipCreateRequest):
            """Add a member to the tenant."""
            role = Role.parse(request.role)
            actor = await self._member(tenant_id, request.actor_id)
            target = TargetSnapshot(tenant_id=tenant_id, owner_actor_id=request.member_id)
            await self._require(actor, ResourceType.TENANT_MEMBERSHIP, Action.CREATE, target)
            member = await self.persistence.grant_membership(tenant_id, request.member_id, role)
            return MembershipResponse(tenant_id=member.tenant_id, actor_id=member.id, role=member.role.value)

        @self.app.put("/tenants/{tenant_id}/memberships/{member_id}", response_model=MembershipResponse)
        async def update_membership(tenant_id: str, member_id: str, request: MembershipUpdateRequest):
            """Change a member's role."""
            role = Role.parse(request.role)
            actor = await self._member(tenant_id, request.actor_id)
            target = await self.persistence.load_snapshot(ResourceType.TENANT_MEMBERSHIP, member_id, tenant_id)
            if target is None:
                raise MembershipNotFound(tenant_id, member_id)
            await self._require(actor, ResourceType.TENANT_MEMBERSHIP, Action.EDIT, target)
            member = await self.persistence.change_role(tenant_id, member_id, role)
            return MembershipResponse(tenant_id=member.tenant_id, actor_id=member.id, role=member.role.value)

        @self.app.delete("/tenants/{tenant_id}/memberships/{member_id}")
        async def delete_membership(
            tenant_id: str,
            member_id: str,
            actor_id: str = Query(..., description="Member performing the change"),
        ):
            """Remove a member from the tenant."""
            actor = await self._member(tenant_id, actor_id)
            target = await self.persistence.load_snapshot(ResourceType.TENANT_MEMBERSHIP, member_id, tenant_id)
            if target is None:
                raise MembershipNotFound(tenant_id, member_id)
            await self._require(actor, ResourceType.TENANT_MEMBERSHIP, Action.DELETE, target)
            await self.persistence.revoke_membership(tenant_id, member_id)
            return {"success": True, "message": "Membership revoked"}

    async def _check_dependencies(self):
        """Check authorization service dependencies."""
        dependencies = {}

        # Check Redis
        try:
            if await self.tracker.health_check():
                dependencies["redis"] = "ok"
            else:
                dependencies["redis"] = "error"
        except Exception:
            dependencies["redis"] = "error"

        # Check PostgreSQL
        try:
            if await self.persistence.health_check():
                dependencies["postgres"] = "ok"
            else:
                dependencies["postgres"] = "error"
        except Exception:
            dependencies["postgres"] = "error"

        return dependencies

    async def start(self):
        """Start authorization service components."""
        divergences = self.verify_policies()
        if divergences:
            raise PolicyConfigurationError(
                "Application tier allows what the data tier denies",
                {"total": len(divergences)},
            )

        await self.persistence.start()
        await self.tracker.start()

        self.logger.info("Authorization service started", resources=len(ResourceType), roles=len(Role))

    async def stop(self):
        """Stop authorization service components."""
        await self.persistence.stop()
        await self.tracker.stop()

        self.logger.info("Authorization service stopped")


def create_app():
    """Create authorization service application."""
    service = AuthorizationService()
    return service.app


if __name__ == "__main__":
    service = AuthorizationService()
    service.run()
