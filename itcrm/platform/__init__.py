from itcrm.platform.security.context import Principal
from itcrm.platform.security.errors import OwnershipViolationError, PermissionDeniedError, ScopeViolationError
from itcrm.platform.security.repository import BaseRepository
from itcrm.platform.security.scope import Scope, apply_scope_filter, resolve_scope, validate_read_scope

__all__ = [
    "Principal",
    "OwnershipViolationError",
    "PermissionDeniedError",
    "ScopeViolationError",
    "BaseRepository",
    "Scope",
    "apply_scope_filter",
    "resolve_scope",
    "validate_read_scope",
]
