from itcrm.core.roles import Role
from itcrm.platform.security.context import Principal
from itcrm.platform.security.errors import OwnershipViolationError, PermissionDeniedError, ScopeViolationError
from itcrm.platform.security.ownership import (
    OwnershipDecision,
    ProposedOwners,
    check_client_company_owners,
    check_contact_owners,
    check_opportunity_owners,
)
from itcrm.platform.security.permissions import has_permission, permissions_for, require_permission
from itcrm.platform.security.repository import BaseRepository, normalize_page
from itcrm.platform.security.scope import Scope, apply_scope_filter, resolve_scope, validate_read_scope

__all__ = [
    "Principal",
    "Role",
    "OwnershipViolationError",
    "PermissionDeniedError",
    "ScopeViolationError",
    "OwnershipDecision",
    "ProposedOwners",
    "check_client_company_owners",
    "check_contact_owners",
    "check_opportunity_owners",
    "has_permission",
    "permissions_for",
    "require_permission",
    "BaseRepository",
    "normalize_page",
    "Scope",
    "apply_scope_filter",
    "resolve_scope",
    "validate_read_scope",
]
