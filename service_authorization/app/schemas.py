"""
Request and response models for the Authorization Service API.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .policy.models import Actor, Decision, TargetSnapshot


class ActorModel(BaseModel):
    """Caller identity as asserted by the upstream gateway."""
    id: str
    tenant_id: str
    role: str
    acting_as: Optional[str] = None
    platform_admin: bool = False

    def to_actor(self) -> Actor:
        return Actor(
            id=self.id,
            tenant_id=self.tenant_id,
            role=self.role,
            acting_as=self.acting_as,
            platform_admin=self.platform_admin,
        )


class TargetModel(BaseModel):
    """Snapshot of the record being acted on."""
    tenant_id: Optional[str] = None
    owner_actor_id: Optional[str] = None
    status: Optional[str] = None
    is_chargeable: Optional[bool] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)

    def to_snapshot(self) -> TargetSnapshot:
        return TargetSnapshot(
            tenant_id=self.tenant_id,
            owner_actor_id=self.owner_actor_id,
            status=self.status,
            is_chargeable=self.is_chargeable,
            attributes=dict(self.attributes),
        )


class AuthorizeRequest(BaseModel):
    """Authorization check request."""
    actor: ActorModel
    resource: str
    action: str
    target: Optional[TargetModel] = None


class DecisionResponse(BaseModel):
    """Authorization decision."""
    allowed: bool
    reason: str
    rule: Optional[str] = None
    role: str
    actual_role: str

    @classmethod
    def from_decision(cls, decision: Decision) -> "DecisionResponse":
        return cls(
            allowed=decision.allowed,
            reason=decision.reason.value,
            rule=decision.rule,
            role=decision.role.value,
            actual_role=decision.actual_role.value,
        )


class TenantCreationRequest(BaseModel):
    actor: ActorModel


class TransitionRequest(BaseModel):
    """Status change requested by a tenant member."""
    actor_id: str
    action: str
    acting_as: Optional[str] = None


class TransitionResponse(BaseModel):
    resource: str
    record_id: str
    from_status: Optional[str]
    status: str
    decision: DecisionResponse


class MembershipCreateRequest(BaseModel):
    actor_id: str = Field(..., description="Member performing the change")
    member_id: str
    role: str


class MembershipUpdateRequest(BaseModel):
    actor_id: str = Field(..., description="Member performing the change")
    role: str


class MembershipResponse(BaseModel):
    tenant_id: str
    actor_id: str
    role: str


class MembershipListResponse(BaseModel):
    memberships: List[MembershipResponse]
    total: int


class StoragePoliciesResponse(BaseModel):
    policies: int
    sql: str
