"""
Row-level-security policy compiler.

Compiles the capability matrix into one PostgreSQL policy per
(table, command). The conditions are built from the same ``Grant`` cells and
the same rule objects the in-process evaluator uses, so the two tiers cannot
drift apart by hand editing.

UPDATE is special: several actions (edit, submit, validate, ...) reach the
same storage command. ``USING`` is the union of every UPDATE-mapped action's
role and rule judged on the stored row. ``WITH CHECK`` is the same union
judged on the row being written: a status-changing action must land on its
destination status, and every other action must leave the row satisfying its
rule. Row-level security cannot compare the old row with the new one, so the
pairing of source and destination status is still enforced by the
conditional update in the persistence layer.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from shared.logging import get_logger
from .conditions import (
    And,
    ColumnIn,
    Condition,
    DataTierSession,
    MemberRoleIn,
    Or,
    RenderContext,
    TenantMember,
    TrueCondition,
)
from .definitions import TRANSITIONS
from .matrix import CapabilityMatrix
from .models import Action, ResourceType, Role, StorageCommand
from .rules import Rule, without_status_gate

Transitions = Mapping[ResourceType, Mapping[Action, str]]
CellCondition = Callable[[Action, Optional[Rule]], Condition]

logger = get_logger("authorization.policy_compiler")

MEMBERSHIP_FUNCTION = "current_memberships"


@dataclass(frozen=True)
class StoragePolicy:
    """One compiled ``CREATE POLICY`` statement."""

    resource: ResourceType
    command: StorageCommand
    using: Optional[Condition]
    with_check: Optional[Condition]
    context: RenderContext
    schema: str = "public"
    role_name: str = "authenticated"

    @property
    def table(self) -> str:
        return self.resource.table

    @property
    def name(self) -> str:
        return policy_name(self.resource, self.command)

    def allows(
        self,
        row: Mapping[str, Any],
        session: DataTierSession,
        new_row: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Whether the data tier would let ``session`` apply the command to ``row``.

        ``USING`` is judged on the stored ``row``, ``WITH CHECK`` on the row
        being written (``new_row``, defaulting to ``row`` when the write
        leaves it unchanged or for INSERT).
        """
        if self.using is not None and self.using.matches(row, session, None) is not True:
            return False
        written = row if new_row is None else new_row
        if self.with_check is not None and self.with_check.matches(written, session, None) is not True:
            return False
        return True

    def sql(self) -> str:
        lines = [
            f'CREATE POLICY "{self.name}"',
            f"ON {self.schema}.{self.table} FOR {self.command.value} TO {self.role_name}",
        ]
        if self.using is not None:
            lines.append(f"USING (\n  {self.using.render(self.context)}\n)")
        if self.with_check is not None:
            lines.append(f"WITH CHECK (\n  {self.with_check.render(self.context)}\n)")
        return "\n".join(lines) + ";"


def policy_name(resource: ResourceType, command: StorageCommand) -> str:
    return f"{resource.table}_{command.value.lower()}_policy"


def stored_row_condition(action: Action, rule: Optional[Rule]) -> Condition:
    return TrueCondition() if rule is None else rule.condition()


def written_row_condition(transitions: Mapping[Action, str]) -> CellCondition:
    """Condition the row written by an UPDATE-mapped action must satisfy."""

    def condition(action: Action, rule: Optional[Rule]) -> Condition:
        destination = transitions.get(action)
        if destination is None:
            return stored_row_condition(action, rule)
        landed = ColumnIn("status", (destination,))
        remainder = without_status_gate(rule)
        return landed if remainder is None else And((landed, remainder.condition()))

    return condition


def _role_condition(
    matrix: CapabilityMatrix,
    resource: ResourceType,
    actions: List[Action],
    role: Role,
    cell_condition: CellCondition = stored_row_condition,
) -> Optional[Condition]:
    """Union of the role's cells over ``actions``, None when none is granted."""
    conditions: List[Condition] = []
    for action in actions:
        if not matrix.is_granted(role, resource, action):
            continue
        condition = cell_condition(action, matrix.rule_for(role, resource, action))
        if isinstance(condition, TrueCondition):
            return condition
        if condition not in conditions:
            conditions.append(condition)
    if not conditions:
        return None
    if len(conditions) == 1:
        return conditions[0]
    return Or(tuple(conditions))


def _grouped_clauses(
    matrix: CapabilityMatrix,
    resource: ResourceType,
    actions: List[Action],
    cell_condition: CellCondition = stored_row_condition,
) -> List[Tuple[Tuple[Role, ...], Condition]]:
    """Roles that share an identical condition collapse into one clause."""
    groups: Dict[Condition, List[Role]] = {}
    for role in Role:
        condition = _role_condition(matrix, resource, actions, role, cell_condition)
        if condition is not None:
            groups.setdefault(condition, []).append(role)
    return [(tuple(roles), condition) for condition, roles in groups.items()]


def _role_and_rule(clauses: List[Tuple[Tuple[Role, ...], Condition]]) -> Condition:
    parts = tuple(And((MemberRoleIn(roles), condition)) for roles, condition in clauses)
    return parts[0] if len(parts) == 1 else Or(parts)


def _command_actions(matrix: CapabilityMatrix, resource: ResourceType) -> Dict[StorageCommand, List[Action]]:
    commands: Dict[StorageCommand, List[Action]] = {}
    for action in matrix.actions_for(resource):
        command = action.storage_command
        if command is not None:
            commands.setdefault(command, []).append(action)
    return commands


def compile_storage_policies(
    matrix: CapabilityMatrix,
    actor_expression: str = "auth.uid()",
    schema: str = "public",
    role_name: str = "authenticated",
    transitions: Optional[Transitions] = None,
) -> List[StoragePolicy]:
    """Compile the matrix into row-level-security policies.

    A (table, command) pair no role is granted produces no policy, which
    row-level security treats as deny.
    """
    transitions = TRANSITIONS if transitions is None else transitions
    policies: List[StoragePolicy] = []
    for resource in ResourceType:
        context = RenderContext(
            table=resource.table,
            actor_expression=actor_expression,
            membership_source=f"{schema}.{MEMBERSHIP_FUNCTION}()",
            columns=resource.columns,
        )
        for command, actions in _command_actions(matrix, resource).items():
            clauses = _grouped_clauses(matrix, resource, actions)
            if not clauses:
                logger.debug("No grants for storage command", resource=resource.value, command=command.value)
                continue

            scoped = TenantMember(_role_and_rule(clauses))
            using: Optional[Condition] = scoped
            with_check: Optional[Condition] = None
            if command is StorageCommand.INSERT:
                using, with_check = None, scoped
            elif command is StorageCommand.UPDATE:
                written = written_row_condition(transitions.get(resource, {}))
                with_check = TenantMember(_role_and_rule(_grouped_clauses(matrix, resource, actions, written)))

            policies.append(StoragePolicy(
                resource=resource,
                command=command,
                using=using,
                with_check=with_check,
                context=context,
                schema=schema,
                role_name=role_name,
            ))

    logger.info("Storage policies compiled", policies=len(policies))
    return policies


def _membership_function(schema: str, actor_expression: str) -> str:
    return (
        f"CREATE OR REPLACE FUNCTION {schema}.{MEMBERSHIP_FUNCTION}()\n"
        "RETURNS TABLE (tenant_id text, role text)\n"
        "LANGUAGE sql\n"
        "SECURITY DEFINER\n"
        "STABLE\n"
        "AS $$\n"
        f"  SELECT tm.tenant_id::text, tm.role::text\n"
        f"  FROM {schema}.tenant_memberships tm\n"
        f"  WHERE tm.actor_id::text = ({actor_expression})::text\n"
        "$$;"
    )


def render_migration(
    policies: List[StoragePolicy],
    schema: str = "public",
    actor_expression: str = "auth.uid()",
) -> str:
    """Idempotent SQL script installing ``policies`` in one transaction.

    Every command's policy is dropped before the new set is created so a
    permission removed from the matrix also disappears from the database.
    """
    statements = ["BEGIN;", _membership_function(schema, actor_expression)]

    by_resource: Dict[ResourceType, List[StoragePolicy]] = {}
    for policy in policies:
        by_resource.setdefault(policy.resource, []).append(policy)

    for resource, resource_policies in by_resource.items():
        statements.append(f"-- {resource.value}")
        statements.append(f"ALTER TABLE {schema}.{resource.table} ENABLE ROW LEVEL SECURITY;")
        for command in StorageCommand:
            statements.append(f'DROP POLICY IF EXISTS "{policy_name(resource, command)}" ON {schema}.{resource.table};')
        statements.extend(policy.sql() for policy in resource_policies)

    statements.append("COMMIT;")
    return "\n\n".join(statements) + "\n"


def policy_index(policies: List[StoragePolicy]) -> Dict[Tuple[ResourceType, StorageCommand], StoragePolicy]:
    return {(policy.resource, policy.command): policy for policy in policies}
