"""
Object-level rule evaluator for the Authorization Service.
"""

from typing import Any, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .errors import UnknownResource, UnknownRole
from .matrix import CapabilityMatrix, get_matrix
from .models import Action, Actor, Decision, DecisionReason, ResourceType, TargetSnapshot

_EMPTY_TARGET = TargetSnapshot()


def evaluate(
    matrix: CapabilityMatrix,
    actor: Actor,
    resource: Any,
    action: Any,
    target: Optional[TargetSnapshot] = None,
) -> Decision:
    """Decide whether ``actor`` may perform ``action`` on ``target``.

    Steps run in a fixed order and the first failing step decides:

    1. tenant scope: a target in another tenant is denied for every role
    2. role check against the capability matrix
    3. the cell's object rule, when it has one

    A missing target is treated as an empty snapshot, so a rule that needs
    ownership or status denies rather than guessing.
    """
    resource = ResourceType.parse(resource)
    parsed = Action.lookup(action)
    action_name = parsed.value if parsed is not None else str(action)
    target = target or _EMPTY_TARGET
    role = actor.effective_role

    def decision(allowed: bool, reason: DecisionReason, rule: Optional[str] = None) -> Decision:
        return Decision(
            allowed=allowed,
            reason=reason,
            resource=resource,
            action=action_name,
            role=role,
            actual_role=actor.role,
            rule=rule,
        )

    if target.tenant_id is not None and target.tenant_id != actor.tenant_id:
        return decision(False, DecisionReason.CROSS_TENANT_ACCESS)

    if not matrix.is_granted(role, resource, action):
        return decision(False, DecisionReason.ROLE_DENIED)

    rule = matrix.rule_for(role, resource, action)
    if rule is None:
        return decision(True, DecisionReason.ROLE_GRANTED)

    if rule.evaluate(actor, target):
        return decision(True, DecisionReason.OBJECT_RULE_GRANTED, rule.name)
    return decision(False, DecisionReason.OBJECT_RULE_DENIED, rule.name)


class PolicyEngine:
    """Authorization entry point used by the service.

    Wraps the pure evaluator with audit logging and metrics. Decisions are
    never cached: every call reads the matrix and the supplied snapshot.
    """

    def __init__(self, matrix: Optional[CapabilityMatrix] = None, metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("authorization.policy_engine")
        self.matrix = matrix or get_matrix()
        self.metrics = metrics

    def decide(
        self,
        actor: Actor,
        resource: Any,
        action: Any,
        target: Optional[TargetSnapshot] = None,
    ) -> Decision:
        """Evaluate and audit one authorization check."""
        try:
            if self.metrics:
                with self.metrics.time_operation("authorization_decision_duration_seconds"):
                    decision = evaluate(self.matrix, actor, resource, action, target)
            else:
                decision = evaluate(self.matrix, actor, resource, action, target)
        except (UnknownRole, UnknownResource) as e:
            self.logger.error(
                "Authorization input outside policy vocabulary",
                actor_id=actor.id,
                resource=str(resource),
                action=str(action),
                error_code=e.code,
            )
            if self.metrics:
                self.metrics.record_error(e.code)
            raise

        fields = decision.audit_fields()
        if self.metrics:
            self.metrics.increment_counter(
                "authorization_decisions_total",
                resource=decision.resource.value,
                action=decision.action,
                reason=decision.reason.value,
            )

        if decision.reason is DecisionReason.CROSS_TENANT_ACCESS:
            self.logger.warning(
                "Cross-tenant access attempt",
                security_event=True,
                actor_id=actor.id,
                actor_tenant_id=actor.tenant_id,
                target_tenant_id=target.tenant_id if target else None,
                **fields,
            )
            if self.metrics:
                self.metrics.increment_counter("cross_tenant_attempts_total", resource=decision.resource.value)
        elif decision.allowed:
            self.logger.info("Authorization granted", actor_id=actor.id, **fields)
        else:
            self.logger.debug("Authorization denied", actor_id=actor.id, **fields)

        return decision

    def authorize(
        self,
        actor: Actor,
        resource: Any,
        action: Any,
        target: Optional[TargetSnapshot] = None,
    ) -> bool:
        return self.decide(actor, resource, action, target).allowed

    def can_create_tenant(self, actor: Actor) -> bool:
        """Platform-level capability; no tenant role grants it."""
        allowed = actor.platform_admin
        self.logger.info("Tenant creation check", actor_id=actor.id, allowed=allowed)
        return allowed
