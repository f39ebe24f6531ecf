from __future__ import annotations

from itcrm.core.errors import ForbiddenError


class ScopeViolationError(ForbiddenError):
    """Raised when a record exists but none of its owners are in the caller's scope."""

    code = "out_of_scope"

    def __init__(self, resource: str, entity_id: int | str) -> None:
        self.resource = resource
        self.entity_id = entity_id
        super().__init__(f"Access to {resource} {entity_id} is forbidden", details={"resource": resource})


class PermissionDeniedError(ForbiddenError):
    code = "permission_denied"

    def __init__(self, permission: str) -> None:
        self.permission = permission
        super().__init__(f"Missing permission: {permission}", details={"permission": permission})


class OwnershipViolationError(ForbiddenError):
    """Raised when proposed owners break an ownership-consistency rule for the caller's role."""

    def __init__(self, resource: str, code: str, reason: str) -> None:
        self.resource = resource
        super().__init__(reason, code=code, details={"resource": resource})
