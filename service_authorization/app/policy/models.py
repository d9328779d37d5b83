"""
Policy data models for the Authorization Service.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

from .errors import UnknownRole, UnknownResource, ImpersonationNotAllowed

if TYPE_CHECKING:
    from .rules import Rule


class Role(str, Enum):
    """Tenant-scoped roles.

    The set is closed and deliberately flat: roles carry no level and do not
    inherit from one another. Customer and supplier sides hold disjoint
    capabilities, and the two finance roles share nothing implicitly.
    """

    VIEWER = "viewer"
    CONTRIBUTOR = "contributor"
    CUSTOMER_MANAGER = "customer_manager"
    SUPPLIER_MANAGER = "supplier_manager"
    FINANCE_CUSTOMER = "finance_customer"
    FINANCE_SUPPLIER = "finance_supplier"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """Coerce ``value`` to a Role or raise UnknownRole."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownRole(value) from None

    @classmethod
    def values(cls) -> list[str]:
        return [role.value for role in cls]


class StorageCommand(str, Enum):
    """Row-level commands enforced by the data tier."""

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class Action(str, Enum):
    """Closed action vocabulary shared by every resource type."""

    VIEW = "view"
    CREATE = "create"
    CREATE_FOR_OTHERS = "create_for_others"
    EDIT = "edit"
    DELETE = "delete"
    SUBMIT = "submit"
    VALIDATE = "validate"
    REJECT = "reject"
    REVIEW = "review"
    MARK_DELIVERED = "mark_delivered"
    EDIT_BILLING = "edit_billing"
    USE_GANTT = "use_gantt"
    UPDATE_STATUS = "update_status"
    ASSIGN_OWNER = "assign_owner"
    SEE_COST_PRICE = "see_cost_price"
    SEE_MARGINS = "see_margins"

    @classmethod
    def lookup(cls, value: Any) -> Optional["Action"]:
        """Return the Action for ``value`` or None when it is not a known verb."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def storage_command(self) -> Optional[StorageCommand]:
        """Data-tier command this action reaches, None for UI-only affordances."""
        return _ACTION_COMMANDS[self]


_ACTION_COMMANDS: Dict[Action, Optional[StorageCommand]] = {
    Action.VIEW: StorageCommand.SELECT,
    Action.CREATE: StorageCommand.INSERT,
    Action.CREATE_FOR_OTHERS: StorageCommand.INSERT,
    Action.EDIT: StorageCommand.UPDATE,
    Action.DELETE: StorageCommand.DELETE,
    Action.SUBMIT: StorageCommand.UPDATE,
    Action.VALIDATE: StorageCommand.UPDATE,
    Action.REJECT: StorageCommand.UPDATE,
    Action.REVIEW: StorageCommand.UPDATE,
    Action.MARK_DELIVERED: StorageCommand.UPDATE,
    Action.EDIT_BILLING: StorageCommand.UPDATE,
    Action.UPDATE_STATUS: StorageCommand.UPDATE,
    Action.ASSIGN_OWNER: StorageCommand.UPDATE,
    Action.USE_GANTT: None,
    Action.SEE_COST_PRICE: None,
    Action.SEE_MARGINS: None,
}


class ResourceType(str, Enum):
    """Tenant-owned resource types."""

    TIMESHEET = "timesheet"
    EXPENSE = "expense"
    MILESTONE = "milestone"
    DELIVERABLE = "deliverable"
    KPI = "kpi"
    QUALITY_STANDARD = "quality_standard"
    RAID_ITEM = "raid_item"
    PARTNER = "partner"
    RESOURCE = "resource"
    TENANT_MEMBERSHIP = "tenant_membership"

    @classmethod
    def parse(cls, value: Any) -> "ResourceType":
        """Coerce ``value`` to a ResourceType or raise UnknownResource."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownResource(value) from None

    @property
    def table(self) -> str:
        """Storage table holding records of this type."""
        return f"{self.value}s"

    @property
    def columns(self) -> Dict[str, str]:
        """Physical columns for snapshot fields whose names differ in storage."""
        if self is ResourceType.TENANT_MEMBERSHIP:
            return {"owner_actor_id": "actor_id"}
        return {}


class TimesheetStatus(str, Enum):
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    VALIDATED = "Validated"
    REJECTED = "Rejected"


# Expenses follow the same lifecycle as timesheets
ExpenseStatus = TimesheetStatus


class DeliverableStatus(str, Enum):
    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    SUBMITTED_FOR_REVIEW = "Submitted for Review"
    RETURNED = "Returned for More Work"
    REVIEW_COMPLETE = "Review Complete"
    DELIVERED = "Delivered"


class RaidStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    CLOSED = "Closed"


STATUS_VOCABULARY: Dict[ResourceType, tuple] = {
    ResourceType.TIMESHEET: tuple(s.value for s in TimesheetStatus),
    ResourceType.EXPENSE: tuple(s.value for s in ExpenseStatus),
    ResourceType.DELIVERABLE: tuple(s.value for s in DeliverableStatus),
    ResourceType.RAID_ITEM: tuple(s.value for s in RaidStatus),
}


@dataclass(frozen=True)
class Actor:
    """An authenticated caller inside one tenant.

    ``role`` is the membership role; ``acting_as`` is the role an admin has
    chosen to view the tenant as. Authorization always uses
    ``effective_role`` while audit records keep both.
    """

    id: str
    tenant_id: str
    role: Role
    acting_as: Optional[Role] = None
    platform_admin: bool = False

    def __post_init__(self):
        object.__setattr__(self, "role", Role.parse(self.role))
        if self.acting_as is not None:
            object.__setattr__(self, "acting_as", Role.parse(self.acting_as))
            if self.role is not Role.ADMIN:
                raise ImpersonationNotAllowed(self.role.value, self.acting_as.value)

    @property
    def effective_role(self) -> Role:
        return self.acting_as or self.role


@dataclass(frozen=True)
class TargetSnapshot:
    """State of the record an action targets, as supplied by the caller.

    Every field is optional so a record that does not exist yet (or a
    listing-level check) can be described by an empty snapshot.
    """

    tenant_id: Optional[str] = None
    owner_actor_id: Optional[str] = None
    status: Optional[str] = None
    is_chargeable: Optional[bool] = None
    attributes: Dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    def flag(self, name: str) -> Optional[Any]:
        """Read a gating field, falling back to free-form attributes."""
        if name in ("is_chargeable", "status", "owner_actor_id", "tenant_id"):
            return getattr(self, name)
        return self.attributes.get(name)

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> "TargetSnapshot":
        if not data:
            return cls()
        known = {"tenant_id", "owner_actor_id", "status", "is_chargeable"}
        return cls(
            tenant_id=data.get("tenant_id"),
            owner_actor_id=data.get("owner_actor_id"),
            status=data.get("status"),
            is_chargeable=data.get("is_chargeable"),
            attributes={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class Grant:
    """One cell of the capability matrix."""

    allowed: bool
    rule: Optional["Rule"] = None

    def __post_init__(self):
        if self.rule is not None and not self.allowed:
            raise ValueError("a denied cell cannot carry an object rule")


ALLOW = Grant(True)
DENY = Grant(False)


def when(rule: "Rule") -> Grant:
    """Role-level allow narrowed by an object rule."""
    return Grant(True, rule)


class DecisionReason(str, Enum):
    """Which evaluation step produced a decision."""

    ROLE_GRANTED = "RoleGranted"
    OBJECT_RULE_GRANTED = "ObjectRuleGranted"
    CROSS_TENANT_ACCESS = "CrossTenantAccess"
    ROLE_DENIED = "RoleDenied"
    OBJECT_RULE_DENIED = "ObjectRuleDenied"


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: DecisionReason
    resource: ResourceType
    action: str
    role: Role
    actual_role: Role
    rule: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def audit_fields(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "resource": self.resource.value,
            "action": self.action,
            "effective_role": self.role.value,
            "actual_role": self.actual_role.value,
            "rule": self.rule,
        }
