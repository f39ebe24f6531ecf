from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, assert_never

from opentelemetry import trace
from sqlalchemy import ColumnElement, Select, or_, select
from sqlalchemy.orm import Session

from itcrm import audit
from itcrm.core.roles import Role
from itcrm.directory.models import User
from itcrm.metrics import observe_scope_denied
from itcrm.platform.security.context import Principal
from itcrm.platform.security.errors import ScopeViolationError


logger = logging.getLogger("itcrm.security.scope")
tracer = trace.get_tracer("itcrm.security.scope")


@dataclass(frozen=True, slots=True)
class Scope:
    """User ids whose records are visible; ``None`` means unrestricted."""

    user_ids: frozenset[int] | None

    @classmethod
    def unrestricted(cls) -> Scope:
        return cls(user_ids=None)

    @property
    def is_unrestricted(self) -> bool:
        return self.user_ids is None

    def allows(self, *owner_ids: int | None) -> bool:
        if self.user_ids is None:
            return True
        return any(owner_id in self.user_ids for owner_id in owner_ids if owner_id is not None)


def resolve_scope(session: Session, principal: Principal) -> Scope:
    """Compute the principal's visibility scope from the current directory state.

    Sales managers see themselves plus their direct reports (one level only).
    Team membership is re-read on every call.
    """

    with tracer.start_as_current_span("scope.resolve") as span:
        span.set_attribute("itcrm.role", principal.role.value)
        match principal.role:
            case Role.ADMIN:
                return Scope.unrestricted()
            case Role.SALES_MANAGER:
                team_ids = session.scalars(select(User.id).where(User.manager_id == principal.user_id)).all()
                user_ids = frozenset({principal.user_id, *team_ids})
                span.set_attribute("itcrm.scope.size", len(user_ids))
                return Scope(user_ids=user_ids)
            case Role.FREELANCE_CONSULTANT:
                return Scope(user_ids=frozenset({principal.user_id}))
            case _:
                assert_never(principal.role)


def apply_scope_filter(query: Select[Any], scope: Scope, *owner_columns: ColumnElement[Any]) -> Select[Any]:
    """Restrict a query to rows where any owner column is in scope."""

    if scope.user_ids is None:
        return query
    user_ids = sorted(scope.user_ids)
    return query.where(or_(*[column.in_(user_ids) for column in owner_columns]))


def validate_read_scope(
    resource: str,
    scope: Scope,
    principal: Principal,
    *,
    entity_id: int | str,
    owner_ids: tuple[int | None, ...],
    action: str = "read",
) -> None:
    """Raise when a loaded record has no owner inside the caller's scope."""

    if scope.allows(*owner_ids):
        return

    observe_scope_denied(resource=resource, action=action)
    logger.warning(
        "scope.denied",
        extra={"resource": resource, "entity_id": entity_id, "action": action, "user_id": principal.user_id},
    )
    audit.record(
        actor_user_id=principal.user_id,
        entity_type="security.scope",
        entity_id=str(entity_id),
        action="scope.denied",
        before=None,
        after={"resource": resource, "action": action, "role": principal.role.value},
        correlation_id=principal.correlation_id,
    )
    raise ScopeViolationError(resource=resource, entity_id=entity_id)
