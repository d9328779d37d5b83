"""
Application tier vs data tier consistency check.

The application tier may be stricter than the data tier (it evaluates
UI-only affordances and the UPDATE policy is a union over actions) but it
must never allow something the data tier would reject. ``check_consistency``
enumerates roles, actions and a generated set of record states and reports
every case where that would happen.

Each case is judged the way the database sees the write: ``USING`` against
the stored row and ``WITH CHECK`` against the row written, which for a
status-changing action carries the destination status. A state without a
tenant describes a record that is not stored yet. It is judged only for
INSERT, with the tenant the caller writes; stored rows always carry a
tenant, so SELECT, UPDATE and DELETE never see one.
"""

from dataclasses import dataclass
from itertools import product
from typing import Any, Dict, Iterator, List, Mapping, Optional

from shared.logging import get_logger
from .compiler import StoragePolicy, Transitions, policy_index
from .conditions import DataTierSession
from .definitions import TRANSITIONS
from .evaluator import evaluate
from .matrix import CapabilityMatrix
from .models import STATUS_VOCABULARY, Action, Actor, ResourceType, Role, StorageCommand, TargetSnapshot

logger = get_logger("authorization.consistency")

ACTOR_ID = "actor-self"
OTHER_ACTOR_ID = "actor-other"
HOME_TENANT = "tenant-home"
FOREIGN_TENANT = "tenant-foreign"


@dataclass(frozen=True)
class Divergence:
    """A case the application tier allows but the data tier denies."""

    role: Role
    actual_role: Role
    resource: ResourceType
    action: Action
    row: Dict[str, Any]
    rule: Optional[str]
    detail: str
    written: Optional[Dict[str, Any]] = None

    def describe(self) -> str:
        text = (
            f"{self.resource.value}.{self.action.value} as {self.role.value} "
            f"(member role {self.actual_role.value}): {self.detail} for {self.row}"
        )
        if self.written is not None and self.written != self.row:
            text += f" written as {self.written}"
        return text


def object_states(resource: ResourceType) -> Iterator[Dict[str, Any]]:
    """Record states the check runs every (role, action) against."""
    statuses = STATUS_VOCABULARY.get(resource, ()) + (None,)
    for tenant_id, owner, status, chargeable in product(
        (HOME_TENANT, FOREIGN_TENANT, None),
        (ACTOR_ID, OTHER_ACTOR_ID, None),
        statuses,
        (True, False, None),
    ):
        yield {
            "tenant_id": tenant_id,
            "owner_actor_id": owner,
            "status": status,
            "is_chargeable": chargeable,
        }


def written_row(
    row: Mapping[str, Any],
    actor: Actor,
    resource: ResourceType,
    action: Action,
    transitions: Transitions = TRANSITIONS,
) -> Optional[Dict[str, Any]]:
    """The row the data tier checks after ``action``, None when no write can happen.

    An unstored record (no tenant) can only be inserted, and is inserted in
    the caller's tenant.
    """
    command = action.storage_command
    written = dict(row)
    if row.get("tenant_id") is None:
        if command is not StorageCommand.INSERT:
            return None
        written["tenant_id"] = actor.tenant_id
    destination = transitions.get(resource, {}).get(action)
    if command is StorageCommand.UPDATE and destination is not None:
        written["status"] = destination
    return written


def _actors() -> Iterator[Actor]:
    for role in Role:
        yield Actor(id=ACTOR_ID, tenant_id=HOME_TENANT, role=role)
    # An admin viewing the tenant as another role keeps its admin membership
    for role in Role:
        if role is not Role.ADMIN:
            yield Actor(id=ACTOR_ID, tenant_id=HOME_TENANT, role=Role.ADMIN, acting_as=role)


def check_consistency(
    matrix: CapabilityMatrix,
    policies: List[StoragePolicy],
    transitions: Transitions = TRANSITIONS,
) -> List[Divergence]:
    """Every case where the application tier is more permissive than the data tier."""
    index = policy_index(policies)
    divergences: List[Divergence] = []
    checked = 0
    unstored = 0

    for actor in _actors():
        session = DataTierSession(actor_id=actor.id, memberships={HOME_TENANT: actor.role})
        for resource in ResourceType:
            for action in matrix.actions_for(resource):
                command = action.storage_command
                if command is None:
                    continue
                policy = index.get((resource, command))
                for row in object_states(resource):
                    written = written_row(row, actor, resource, action, transitions)
                    if written is None:
                        unstored += 1
                        continue
                    checked += 1
                    decision = evaluate(matrix, actor, resource, action, TargetSnapshot.from_mapping(row))
                    if not decision.allowed:
                        continue
                    stored = written if command is StorageCommand.INSERT else row
                    if policy is None:
                        detail = f"no {command.value} policy on {resource.table}"
                    elif not policy.allows(stored, session, written):
                        detail = f"{policy.name} rejects the row"
                    else:
                        continue
                    divergences.append(Divergence(
                        role=actor.effective_role,
                        actual_role=actor.role,
                        resource=resource,
                        action=action,
                        row=row,
                        rule=decision.rule,
                        detail=detail,
                        written=written,
                    ))

    if divergences:
        logger.error("Application tier exceeds data tier", divergences=len(divergences), cases=checked)
    else:
        logger.info("Policy tiers consistent", cases=checked, unstored_skipped=unstored)
    return divergences
