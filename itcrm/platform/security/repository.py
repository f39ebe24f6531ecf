from __future__ import annotations

from typing import Any, ClassVar, Generic, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from itcrm.core.config import get_settings
from itcrm.core.errors import NotFoundError
from itcrm.platform.security.context import Principal
from itcrm.platform.security.scope import Scope, apply_scope_filter, validate_read_scope


ModelT = TypeVar("ModelT")

# Row offsets are bound as signed 64-bit integers.
_MAX_OFFSET = 2**63 - 1


def normalize_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    """Clamp 1-indexed page and page size to the configured bounds."""

    settings = get_settings()
    resolved_page = max(1, page or 1)
    resolved_size = settings.default_page_size if page_size is None else page_size
    resolved_size = max(1, min(resolved_size, settings.max_page_size))
    resolved_page = min(resolved_page, _MAX_OFFSET // resolved_size + 1)
    return resolved_page, resolved_size


class BaseRepository(Generic[ModelT]):
    """Scope-aware access to one entity table.

    Subclasses name the model and the owner attributes whose values decide
    visibility. A record is visible when any owner attribute is in scope.
    """

    resource: ClassVar[str] = ""
    model: ClassVar[type[Any]]
    owner_fields: ClassVar[tuple[str, ...]] = ()
    not_found_message: ClassVar[str] = "record not found"

    def owner_columns(self) -> list[Any]:
        return [getattr(self.model, name) for name in self.owner_fields]

    def owner_ids(self, record: ModelT) -> tuple[int | None, ...]:
        return tuple(getattr(record, name) for name in self.owner_fields)

    def apply_scope_query(self, query: Select[Any], scope: Scope) -> Select[Any]:
        return apply_scope_filter(query, scope, *self.owner_columns())

    def validate_read_scope(self, record: ModelT, scope: Scope, principal: Principal, *, action: str = "read") -> None:
        validate_read_scope(
            self.resource,
            scope,
            principal,
            entity_id=getattr(record, "id"),
            owner_ids=self.owner_ids(record),
            action=action,
        )

    def find(self, session: Session, record_id: int) -> ModelT | None:
        return session.get(self.model, record_id)

    def get_or_404(self, session: Session, record_id: int) -> ModelT:
        record = self.find(session, record_id)
        if record is None:
            raise NotFoundError(self.not_found_message)
        return record

    def get_visible(
        self,
        session: Session,
        scope: Scope,
        principal: Principal,
        record_id: int,
        *,
        action: str = "read",
    ) -> ModelT:
        """Fetch regardless of scope, then check membership: missing is 404, hidden is 403."""

        record = self.get_or_404(session, record_id)
        self.validate_read_scope(record, scope, principal, action=action)
        return record

    def paginate(
        self,
        session: Session,
        query: Select[Any],
        *,
        page: int,
        page_size: int,
    ) -> tuple[list[ModelT], int]:
        total = session.scalar(select(func.count()).select_from(query.order_by(None).subquery())) or 0
        items = session.scalars(
            query.order_by(self.model.id.desc()).offset((page - 1) * page_size).limit(page_size)
        ).all()
        return list(items), int(total)
