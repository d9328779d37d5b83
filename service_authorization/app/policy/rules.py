"""
Object-level rules.

A rule narrows a role-level grant using the state of one record. Each rule
is a small immutable value with two compile targets taken from the same
object: ``evaluate`` for the in-process check and ``condition`` for the
row-level-security expression. Rules never widen a grant; the evaluator only
consults them after the role check has passed.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple

from .conditions import (
    And,
    ColumnDistinctFromActor,
    ColumnEqualsActor,
    ColumnIn,
    ColumnIsNotTrue,
    ColumnIsTrue,
    Condition,
    MemberRoleIn,
    Or,
)
from .models import Actor, DeliverableStatus, Role, TargetSnapshot, TimesheetStatus


class Rule:
    """Base class for object rules."""

    label: Optional[str]

    @property
    def name(self) -> str:
        return self.label or self.describe()

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        raise NotImplementedError

    def condition(self) -> Condition:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Ownership(Rule):
    """The actor owns (created, or is assigned to) the record."""

    column: str = "owner_actor_id"
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        owner = target.flag(self.column)
        return owner is not None and owner == actor.id

    def condition(self) -> Condition:
        return ColumnEqualsActor(self.column)

    def describe(self) -> str:
        return "owner"


@dataclass(frozen=True)
class NotSelf(Rule):
    """The record is not the actor's own (e.g. one's own membership)."""

    column: str = "owner_actor_id"
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return target.flag(self.column) != actor.id

    def condition(self) -> Condition:
        return ColumnDistinctFromActor(self.column)

    def describe(self) -> str:
        return "not_self"


@dataclass(frozen=True)
class StatusIn(Rule):
    """Status gate: the record must currently be in one of ``statuses``."""

    statuses: Tuple[str, ...]
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return target.status is not None and target.status in self.statuses

    def condition(self) -> Condition:
        return ColumnIn("status", self.statuses)

    def describe(self) -> str:
        return f"status_in({', '.join(self.statuses)})"


@dataclass(frozen=True)
class ActorRoleIn(Rule):
    """Elevated-role sub-predicate on the actor's effective role."""

    roles: Tuple[Role, ...]
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return actor.effective_role in self.roles

    def condition(self) -> Condition:
        return MemberRoleIn(self.roles)

    def describe(self) -> str:
        return f"role_in({', '.join(r.value for r in self.roles)})"


@dataclass(frozen=True)
class SideRouted(Rule):
    """Route an action to one of two disjoint role groups by a boolean flag.

    A missing flag counts as false in both tiers (``IS NOT TRUE``).
    """

    flag: str
    when_true: Tuple[Role, ...]
    when_false: Tuple[Role, ...]
    label: Optional[str] = field(default=None, compare=False)

    def side_for(self, target: TargetSnapshot) -> Tuple[Role, ...]:
        return self.when_true if target.flag(self.flag) is True else self.when_false

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return actor.effective_role in self.side_for(target)

    def condition(self) -> Condition:
        return Or((
            And((ColumnIsTrue(self.flag), MemberRoleIn(self.when_true))),
            And((ColumnIsNotTrue(self.flag), MemberRoleIn(self.when_false))),
        ))

    def describe(self) -> str:
        true_side = ", ".join(r.value for r in self.when_true)
        false_side = ", ".join(r.value for r in self.when_false)
        return f"{self.flag} ? ({true_side}) : ({false_side})"


@dataclass(frozen=True)
class AllOf(Rule):
    rules: Tuple[Rule, ...]
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return all(rule.evaluate(actor, target) for rule in self.rules)

    def condition(self) -> Condition:
        return And(tuple(rule.condition() for rule in self.rules))

    def describe(self) -> str:
        return "all_of(" + ", ".join(rule.name for rule in self.rules) + ")"


@dataclass(frozen=True)
class AnyOf(Rule):
    rules: Tuple[Rule, ...]
    label: Optional[str] = field(default=None, compare=False)

    def evaluate(self, actor: Actor, target: TargetSnapshot) -> bool:
        return any(rule.evaluate(actor, target) for rule in self.rules)

    def condition(self) -> Condition:
        return Or(tuple(rule.condition() for rule in self.rules))

    def describe(self) -> str:
        return "any_of(" + ", ".join(rule.name for rule in self.rules) + ")"


def all_of(*rules: Rule, name: Optional[str] = None) -> AllOf:
    return AllOf(tuple(rules), label=name)


def any_of(*rules: Rule, name: Optional[str] = None) -> AnyOf:
    return AnyOf(tuple(rules), label=name)


def source_statuses(rule: Optional[Rule]) -> Optional[FrozenSet[str]]:
    """Statuses a rule requires the record to be in, None when ungated."""
    if rule is None:
        return None
    if isinstance(rule, StatusIn):
        return frozenset(rule.statuses)
    if isinstance(rule, AllOf):
        gates = [g for g in (source_statuses(r) for r in rule.rules) if g is not None]
        if not gates:
            return None
        result = gates[0]
        for gate in gates[1:]:
            result &= gate
        return result
    if isinstance(rule, AnyOf):
        gates = [source_statuses(r) for r in rule.rules]
        if any(g is None for g in gates):
            return None
        return frozenset().union(*gates)
    return None


def without_status_gate(rule: Optional[Rule]) -> Optional[Rule]:
    """``rule`` with every status gate removed, None when nothing else remains.

    Used for the row an update writes: the status has moved on, the other
    predicates (ownership, side routing, role) must still hold.
    """
    if rule is None or isinstance(rule, StatusIn):
        return None
    if isinstance(rule, AllOf):
        rest = tuple(r for r in (without_status_gate(r) for r in rule.rules) if r is not None)
        if not rest:
            return None
        return rest[0] if len(rest) == 1 else AllOf(rest, label=rule.label)
    if isinstance(rule, AnyOf):
        branches = tuple(without_status_gate(r) for r in rule.rules)
        if any(branch is None for branch in branches):
            return None
        return AnyOf(branches, label=rule.label)
    return rule


def _statuses(values: Iterable) -> Tuple[str, ...]:
    return tuple(getattr(v, "value", v) for v in values)


# ---------------------------------------------------------------------------
# Named rules referenced by the policy table
# ---------------------------------------------------------------------------

CUSTOMER_SIDE = (Role.ADMIN, Role.CUSTOMER_MANAGER, Role.FINANCE_CUSTOMER)
SUPPLIER_SIDE = (Role.ADMIN, Role.SUPPLIER_MANAGER, Role.FINANCE_SUPPLIER)

OWNER = Ownership(label="owner")
NOT_SELF = NotSelf(label="not_self")

DRAFT_ONLY = StatusIn(_statuses([TimesheetStatus.DRAFT]), label="draft_only")
DRAFT_OR_REJECTED = StatusIn(
    _statuses([TimesheetStatus.DRAFT, TimesheetStatus.REJECTED]),
    label="draft_or_rejected",
)
AWAITING_VALIDATION = StatusIn(_statuses([TimesheetStatus.SUBMITTED]), label="awaiting_validation")

# Supplier-side roles may raise and progress records for other team members
ON_BEHALF = ActorRoleIn(SUPPLIER_SIDE, label="on_behalf")
OWNER_OR_ON_BEHALF = any_of(OWNER, ON_BEHALF, name="owner_or_on_behalf")

EXPENSE_VALIDATION_ROUTE = SideRouted(
    flag="is_chargeable",
    when_true=CUSTOMER_SIDE,
    when_false=SUPPLIER_SIDE,
    label="expense_validation_route",
)

DELIVERY_LEAD = ActorRoleIn((Role.ADMIN, Role.SUPPLIER_MANAGER), label="delivery_lead")
ASSIGNEE_OR_DELIVERY_LEAD = any_of(OWNER, DELIVERY_LEAD, name="assignee_or_delivery_lead")

READY_FOR_REVIEW = StatusIn(
    _statuses([DeliverableStatus.IN_PROGRESS, DeliverableStatus.RETURNED]),
    label="ready_for_review",
)
UNDER_REVIEW = StatusIn(_statuses([DeliverableStatus.SUBMITTED_FOR_REVIEW]), label="under_review")
REVIEW_COMPLETE = StatusIn(_statuses([DeliverableStatus.REVIEW_COMPLETE]), label="review_complete")
