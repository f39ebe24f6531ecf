from __future__ import annotations

import logging
from typing import assert_never

from itcrm.core.roles import Role
from itcrm.metrics import observe_permission_denied
from itcrm.platform.security.context import Principal
from itcrm.platform.security.errors import PermissionDeniedError


logger = logging.getLogger("itcrm.security.permissions")


_SHARED_CRM_PERMISSIONS = frozenset(
    {
        "crm.client_companies.read",
        "crm.client_categories.read",
        "crm.contacts.read",
        "crm.contacts.create",
        "crm.contacts.update",
        "crm.opportunities.read",
        "crm.opportunities.create",
        "crm.opportunities.update",
        "crm.activities.read",
        "crm.activities.create",
    }
)

_ADMIN_PERMISSIONS = _SHARED_CRM_PERMISSIONS | {
    "crm.client_companies.create",
    "crm.client_companies.update",
    "crm.client_categories.manage",
    "crm.owners.reassign",
    "crm.metrics.team.read",
    "directory.users.manage",
    "system.metrics.read",
}

_SALES_MANAGER_PERMISSIONS = _SHARED_CRM_PERMISSIONS | {
    "crm.client_companies.create",
    "crm.client_companies.update",
    "crm.metrics.team.read",
    "directory.team.read",
}

_FREELANCE_CONSULTANT_PERMISSIONS = _SHARED_CRM_PERMISSIONS


def permissions_for(role: Role) -> frozenset[str]:
    """Static role to permission allow-list; independent of any data."""

    match role:
        case Role.ADMIN:
            return _ADMIN_PERMISSIONS
        case Role.SALES_MANAGER:
            return _SALES_MANAGER_PERMISSIONS
        case Role.FREELANCE_CONSULTANT:
            return _FREELANCE_CONSULTANT_PERMISSIONS
        case _:
            assert_never(role)


def has_permission(principal: Principal, permission: str) -> bool:
    return permission in permissions_for(principal.role)


def require_permission(principal: Principal, permission: str) -> None:
    if has_permission(principal, permission):
        return
    observe_permission_denied(permission=permission, role=principal.role.value)
    logger.warning(
        "permission.denied",
        extra={"user_id": principal.user_id, "role": principal.role.value, "permission": permission},
    )
    raise PermissionDeniedError(permission)
