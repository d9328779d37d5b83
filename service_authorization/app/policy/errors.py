"""
Policy error types.

Ordinary denial is a value (``Decision``), never an exception. Only input
outside the closed vocabularies, broken policy configuration and data-tier
conflicts raise.
"""

from typing import Any, Dict, Optional

from shared.errors import AccessLayerException, ConflictError, NotFoundError, ServiceError


class UnknownRole(AccessLayerException):
    """Role outside the closed role set."""

    def __init__(self, role: Any):
        super().__init__("UNKNOWN_ROLE", f"Unknown role: {role!r}", {"role": str(role)})


class UnknownResource(AccessLayerException):
    """Resource type outside the closed resource set."""

    def __init__(self, resource: Any):
        super().__init__("UNKNOWN_RESOURCE", f"Unknown resource type: {resource!r}", {"resource": str(resource)})


class ImpersonationNotAllowed(AccessLayerException):
    """Only tenant admins may act as another role."""

    def __init__(self, role: str, acting_as: str):
        super().__init__(
            "IMPERSONATION_NOT_ALLOWED",
            f"Role {role!r} cannot act as {acting_as!r}",
            {"role": role, "acting_as": acting_as},
        )


class PolicyConfigurationError(ServiceError):
    """The declarative policy table is incomplete or malformed."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details, code="POLICY_CONFIGURATION_ERROR")


class StaleStateError(ConflictError):
    """A conditional status update found the record in a different state."""

    def __init__(self, resource: str, record_id: str, expected_status: Optional[str], current_status: Optional[str]):
        super().__init__(
            "STALE_STATE",
            f"{resource} {record_id} is no longer {expected_status!r}",
            {
                "resource": resource,
                "record_id": record_id,
                "expected_status": expected_status,
                "current_status": current_status,
            },
        )


class RecordNotFound(NotFoundError):
    def __init__(self, resource: str, record_id: str):
        super().__init__("RECORD_NOT_FOUND", f"{resource} {record_id} not found", {"resource": resource, "record_id": record_id})


class MembershipNotFound(NotFoundError):
    def __init__(self, tenant_id: str, actor_id: str):
        super().__init__(
            "MEMBERSHIP_NOT_FOUND",
            f"Actor {actor_id} is not a member of tenant {tenant_id}",
            {"tenant_id": tenant_id, "actor_id": actor_id},
        )


class MembershipExists(ConflictError):
    def __init__(self, tenant_id: str, actor_id: str):
        super().__init__(
            "MEMBERSHIP_EXISTS",
            f"Actor {actor_id} is already a member of tenant {tenant_id}",
            {"tenant_id": tenant_id, "actor_id": actor_id},
        )
