"""
Data-tier condition expressions.

Object rules compile to these nodes. A node renders to a PostgreSQL boolean
expression for row-level-security policies and can also be evaluated
in-process against a row with SQL three-valued semantics (``None`` stands
for NULL), which is what the consistency check runs against.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple

from .models import Role


@dataclass(frozen=True)
class RenderContext:
    """Names used while rendering a condition to SQL."""

    table: str
    actor_expression: str = "auth.uid()"
    membership_alias: str = "m"
    membership_source: str = "current_memberships()"
    columns: Mapping[str, str] = field(default_factory=dict, hash=False)

    @property
    def actor_text(self) -> str:
        """Current actor id as text; identifiers are compared as text."""
        return f"({self.actor_expression})::text"

    def column(self, name: str) -> str:
        """Qualified physical column for a logical snapshot field."""
        return f"{self.table}.{self.columns.get(name, name)}"


@dataclass(frozen=True)
class DataTierSession:
    """Who the database believes the caller is."""

    actor_id: str
    memberships: Mapping[str, Role]

    def role_in(self, tenant_id: Optional[str]) -> Optional[Role]:
        if tenant_id is None:
            return None
        return self.memberships.get(tenant_id)


def quote_literal(value: Any) -> str:
    """Render a Python scalar as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    text = value.value if isinstance(value, Role) else str(value)
    return "'" + text.replace("'", "''") + "'"


def _and(values) -> Optional[bool]:
    result: Optional[bool] = True
    for value in values:
        if value is False:
            return False
        if value is None:
            result = None
    return result


def _or(values) -> Optional[bool]:
    result: Optional[bool] = False
    for value in values:
        if value is True:
            return True
        if value is None:
            result = None
    return result


class Condition:
    """Base class for condition nodes."""

    def render(self, ctx: RenderContext) -> str:
        raise NotImplementedError

    def matches(self, row: Mapping[str, Any], session: DataTierSession, member_role: Role) -> Optional[bool]:
        raise NotImplementedError


@dataclass(frozen=True)
class TrueCondition(Condition):
    def render(self, ctx: RenderContext) -> str:
        return "TRUE"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return True


@dataclass(frozen=True)
class ColumnEqualsActor(Condition):
    column: str

    def render(self, ctx: RenderContext) -> str:
        return f"{ctx.column(self.column)}::text = {ctx.actor_text}"

    def matches(self, row, session, member_role) -> Optional[bool]:
        value = row.get(self.column)
        if value is None:
            return None
        return value == session.actor_id


@dataclass(frozen=True)
class ColumnDistinctFromActor(Condition):
    column: str

    def render(self, ctx: RenderContext) -> str:
        return f"{ctx.column(self.column)}::text IS DISTINCT FROM {ctx.actor_text}"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return row.get(self.column) != session.actor_id


@dataclass(frozen=True)
class ColumnIn(Condition):
    column: str
    values: Tuple[str, ...]

    def render(self, ctx: RenderContext) -> str:
        literals = ", ".join(quote_literal(v) for v in self.values)
        return f"{ctx.column(self.column)} IN ({literals})"

    def matches(self, row, session, member_role) -> Optional[bool]:
        value = row.get(self.column)
        if value is None:
            return None
        return value in self.values


@dataclass(frozen=True)
class ColumnIsTrue(Condition):
    column: str

    def render(self, ctx: RenderContext) -> str:
        return f"{ctx.column(self.column)} IS TRUE"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return row.get(self.column) is True


@dataclass(frozen=True)
class ColumnIsNotTrue(Condition):
    column: str

    def render(self, ctx: RenderContext) -> str:
        return f"{ctx.column(self.column)} IS NOT TRUE"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return row.get(self.column) is not True


@dataclass(frozen=True)
class MemberRoleIn(Condition):
    """Role held by the caller's membership in the row's tenant."""

    roles: Tuple[Role, ...]

    def render(self, ctx: RenderContext) -> str:
        literals = ", ".join(quote_literal(r) for r in self.roles)
        return f"{ctx.membership_alias}.role IN ({literals})"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return member_role in self.roles


@dataclass(frozen=True)
class And(Condition):
    items: Tuple[Condition, ...]

    def render(self, ctx: RenderContext) -> str:
        parts = [c.render(ctx) for c in self.items if not isinstance(c, TrueCondition)]
        if not parts:
            return "TRUE"
        if len(parts) == 1:
            return parts[0]
        return "(" + " AND ".join(parts) + ")"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return _and(c.matches(row, session, member_role) for c in self.items)


@dataclass(frozen=True)
class Or(Condition):
    items: Tuple[Condition, ...]

    def render(self, ctx: RenderContext) -> str:
        if any(isinstance(c, TrueCondition) for c in self.items):
            return "TRUE"
        parts = [c.render(ctx) for c in self.items]
        if not parts:
            return "FALSE"
        if len(parts) == 1:
            return parts[0]
        return "(" + " OR ".join(parts) + ")"

    def matches(self, row, session, member_role) -> Optional[bool]:
        return _or(c.matches(row, session, member_role) for c in self.items)


@dataclass(frozen=True)
class TenantMember(Condition):
    """The caller holds a membership in the row's tenant satisfying ``inner``.

    Memberships are read through a SECURITY DEFINER function so policies on
    ``tenant_memberships`` itself do not recurse.
    """

    inner: Condition

    def render(self, ctx: RenderContext) -> str:
        alias = ctx.membership_alias
        clauses = [f"{alias}.tenant_id = {ctx.column('tenant_id')}::text"]
        if not isinstance(self.inner, TrueCondition):
            clauses.append(self.inner.render(ctx))
        where = "\n      AND ".join(clauses)
        return f"EXISTS (\n    SELECT 1 FROM {ctx.membership_source} {alias}\n    WHERE {where}\n  )"

    def matches(self, row, session, member_role=None) -> Optional[bool]:
        role = session.role_in(row.get("tenant_id"))
        if role is None:
            return False
        return self.inner.matches(row, session, role) is True
