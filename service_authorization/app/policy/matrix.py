"""
Role capability matrix for the Authorization Service.
"""

from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from shared.logging import get_logger
from .definitions import POLICY, PolicyTable
from .errors import PolicyConfigurationError
from .models import Action, Grant, ResourceType, Role
from .rules import Rule


class CapabilityMatrix:
    """Total mapping (role, resource, action) -> Grant.

    The matrix is built from the declarative policy table and validated on
    construction: every resource must be present and every row must carry an
    explicit cell for every role. Lookups never fall back to a default.
    """

    def __init__(self, table: Optional[PolicyTable] = None):
        self.logger = get_logger("authorization.matrix")
        self._table = POLICY if table is None else table
        self._validate()
        self.logger.info(
            "Capability matrix loaded",
            resources=len(self._table),
            cells=sum(len(row) for actions in self._table.values() for row in actions.values()),
        )

    def _validate(self):
        """Reject an incomplete or malformed policy table."""
        missing = [r.value for r in ResourceType if r not in self._table]
        if missing:
            raise PolicyConfigurationError("Resources missing from policy table", {"resources": missing})

        for resource, actions in self._table.items():
            if not isinstance(resource, ResourceType):
                raise PolicyConfigurationError("Unknown resource in policy table", {"resource": str(resource)})
            if not actions:
                raise PolicyConfigurationError("Resource has no actions", {"resource": resource.value})
            for action, row in actions.items():
                if not isinstance(action, Action):
                    raise PolicyConfigurationError(
                        "Unknown action in policy table",
                        {"resource": resource.value, "action": str(action)},
                    )
                absent = [role.value for role in Role if role not in row]
                if absent:
                    raise PolicyConfigurationError(
                        "Policy row does not name every role",
                        {"resource": resource.value, "action": action.value, "roles": absent},
                    )
                for role, cell in row.items():
                    if not isinstance(cell, Grant):
                        raise PolicyConfigurationError(
                            "Policy cell is not a grant",
                            {"resource": resource.value, "action": action.value, "role": str(role)},
                        )

    def _cell(self, role: Any, resource: Any, action: Any) -> Optional[Grant]:
        role = Role.parse(role)
        resource = ResourceType.parse(resource)
        parsed = Action.lookup(action)
        if parsed is None:
            return None
        row = self._table[resource].get(parsed)
        if row is None:
            return None
        return row[role]

    def is_granted(self, role: Any, resource: Any, action: Any) -> bool:
        """Role-level permission, ignoring object state.

        Raises UnknownRole / UnknownResource for values outside the closed
        sets; an action the resource does not define is simply not granted.
        """
        cell = self._cell(role, resource, action)
        return cell is not None and cell.allowed

    def rule_for(self, role: Any, resource: Any, action: Any) -> Optional[Rule]:
        """Object rule narrowing a granted cell, if any."""
        cell = self._cell(role, resource, action)
        if cell is None or not cell.allowed:
            return None
        return cell.rule

    def grant(self, role: Any, resource: Any, action: Any) -> Optional[Grant]:
        return self._cell(role, resource, action)

    def actions_for(self, resource: Any) -> List[Action]:
        return list(self._table[ResourceType.parse(resource)].keys())

    def roles_granted(self, resource: Any, action: Any) -> List[Role]:
        resource = ResourceType.parse(resource)
        parsed = Action.lookup(action)
        row: Mapping[Role, Grant] = self._table[resource].get(parsed, {}) if parsed else {}
        return [role for role in Role if role in row and row[role].allowed]

    def cells(self) -> Iterator[Tuple[Role, ResourceType, Action, Grant]]:
        """Every defined cell, in declaration order."""
        for resource, actions in self._table.items():
            for action, row in actions.items():
                for role in Role:
                    yield role, resource, action, row[role]

    def for_role(self, role: Any) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Capability dump for one role: resource -> action -> {allowed, rule}."""
        role = Role.parse(role)
        result: Dict[str, Dict[str, Dict[str, Any]]] = {}
        for resource, actions in self._table.items():
            result[resource.value] = {
                action.value: {
                    "allowed": row[role].allowed,
                    "rule": row[role].rule.name if row[role].rule is not None else None,
                }
                for action, row in actions.items()
            }
        return result


_default_matrix: Optional[CapabilityMatrix] = None


def get_matrix() -> CapabilityMatrix:
    """Process-wide matrix built from the default policy table."""
    global _default_matrix
    if _default_matrix is None:
        _default_matrix = CapabilityMatrix()
    return _default_matrix
