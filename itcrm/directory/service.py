from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from itcrm import audit
from itcrm.core.config import get_settings
from itcrm.core.errors import ConflictError, ForbiddenError, NotFoundError, UnauthenticatedError, ValidationFailedError
from itcrm.core.passwords import hash_password, verify_password
from itcrm.core.roles import Role
from itcrm.core.schemas import Page
from itcrm.directory.models import User
from itcrm.directory.schemas import LoginRequest, RegisterRequest, SessionUserRead, UserCreate, UserRead, UserUpdate
from itcrm.platform.security.context import Principal
from itcrm.platform.security.repository import normalize_page


logger = logging.getLogger("itcrm.directory")


def find_active_user(session: Session, user_id: int, *, role: Role | None = None) -> User | None:
    user = session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    if role is not None and user.role is not role:
        return None
    return user


def _paginate_users(session: Session, stmt: Select[Any], page: int | None, page_size: int | None) -> Page[UserRead]:
    resolved_page, resolved_size = normalize_page(page, page_size)
    total = session.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = session.scalars(
        stmt.order_by(User.id.desc()).offset((resolved_page - 1) * resolved_size).limit(resolved_size)
    ).all()
    return Page[UserRead](
        items=[UserRead.model_validate(row) for row in rows],
        total=int(total),
        page=resolved_page,
        page_size=resolved_size,
    )


def _search(stmt: Select[Any], q: str | None) -> Select[Any]:
    if not q:
        return stmt
    pattern = f"%{q}%"
    return stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))


def _ensure_email_available(session: Session, email: str, *, user_id: int | None = None) -> None:
    existing = session.scalar(select(User).where(User.email == email))
    if existing is not None and existing.id != user_id:
        raise ConflictError("Email is already taken")


def _require_sales_manager(session: Session, manager_id: int | None) -> User:
    if manager_id is None:
        raise ValidationFailedError("A freelance consultant must be assigned to a sales manager")
    manager = find_active_user(session, manager_id, role=Role.SALES_MANAGER)
    if manager is None:
        raise ValidationFailedError("The selected sales manager does not exist or is not active")
    return manager


def _create_user(
    session: Session,
    *,
    name: str,
    email: str,
    password: str,
    role: Role,
    manager_id: int | None,
    is_active: bool = True,
) -> User:
    _ensure_email_available(session, email)
    if role is Role.FREELANCE_CONSULTANT:
        _require_sales_manager(session, manager_id)

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        role=role,
        manager_id=manager_id if role is Role.FREELANCE_CONSULTANT else None,
        is_active=is_active,
    )
    session.add(user)
    session.flush()
    if role is not Role.FREELANCE_CONSULTANT:
        user.manager_id = user.id
        session.flush()
    return user


def _commit(session: Session, audit_entry: dict[str, Any]) -> None:
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        audit.discard(audit_entry)
        logger.warning("directory.integrity_conflict", extra={"error": str(exc.orig)})
        raise ConflictError("Email is already taken") from exc


def _ensure_no_active_reports(session: Session, manager: User) -> None:
    report_ids = session.scalars(
        select(User.id)
        .where(User.manager_id == manager.id, User.id != manager.id, User.is_active.is_(True))
        .order_by(User.id)
    ).all()
    if report_ids:
        raise ConflictError(
            "Sales manager still has active team members",
            code="manager_has_reports",
            details={"userIds": list(report_ids)},
        )


class AuthService:
    entity_type = "directory.user"

    def register(self, session: Session, dto: RegisterRequest) -> UserRead:
        if dto.role is Role.ADMIN and not get_settings().allow_admin_signup:
            raise ForbiddenError("Admin self-registration is disabled", code="admin_signup_disabled")

        user = _create_user(
            session,
            name=dto.name,
            email=dto.email,
            password=dto.password,
            role=dto.role,
            manager_id=dto.manager_id,
        )
        audit_entry = audit.record(
            actor_user_id=user.id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="register",
            before=None,
            after={"role": user.role.value, "managerId": user.manager_id},
        )
        _commit(session, audit_entry)
        session.refresh(user)
        return UserRead.model_validate(user)

    def login(self, session: Session, dto: LoginRequest) -> SessionUserRead:
        user = session.scalar(select(User).where(User.email == dto.email))
        if user is None:
            raise UnauthenticatedError("Invalid email or password", code="invalid_credentials")
        if not user.is_active:
            raise ForbiddenError("Account is deactivated", code="account_inactive")
        if not verify_password(dto.password, user.password_hash):
            raise UnauthenticatedError("Invalid email or password", code="invalid_credentials")

        logger.info("auth.login", extra={"user_id": user.id, "role": user.role.value})
        return SessionUserRead.model_validate(user)

    def me(self, session: Session, principal: Principal) -> SessionUserRead:
        user = session.get(User, principal.user_id)
        if user is None:
            raise UnauthenticatedError()
        return SessionUserRead.model_validate(user)


class UserService:
    entity_type = "directory.user"

    def list_users(
        self,
        session: Session,
        filters: dict[str, Any],
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[UserRead]:
        stmt: Select[Any] = _search(select(User), filters.get("q"))
        if filters.get("role") is not None:
            stmt = stmt.where(User.role == filters["role"])
        if filters.get("is_active") is not None:
            stmt = stmt.where(User.is_active.is_(filters["is_active"]))
        return _paginate_users(session, stmt, page, page_size)

    def create_user(self, session: Session, principal: Principal, dto: UserCreate) -> UserRead:
        user = _create_user(
            session,
            name=dto.name,
            email=dto.email,
            password=dto.password,
            role=dto.role,
            manager_id=dto.manager_id,
            is_active=dto.is_active,
        )
        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="create",
            before=None,
            after=UserRead.model_validate(user).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, audit_entry)
        session.refresh(user)
        return UserRead.model_validate(user)

    def update_user(self, session: Session, principal: Principal, user_id: int, dto: UserUpdate) -> UserRead:
        user = session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        changes = dto.model_dump(exclude_unset=True)
        for field_name, value in changes.items():
            if value is None:
                raise ValidationFailedError(f"{field_name} cannot be null", details={"field": field_name})
        if not changes:
            return UserRead.model_validate(user)

        if "email" in changes:
            _ensure_email_available(session, changes["email"], user_id=user.id)

        role = changes.get("role", user.role)
        if user.role is Role.SALES_MANAGER and (role is not Role.SALES_MANAGER or changes.get("is_active") is False):
            _ensure_no_active_reports(session, user)
        if role is Role.FREELANCE_CONSULTANT:
            if "role" in changes or "manager_id" in changes:
                manager = _require_sales_manager(session, changes.get("manager_id", user.manager_id))
                if manager.id == user.id:
                    raise ValidationFailedError("A freelance consultant cannot manage themself")
        else:
            changes["manager_id"] = user.id

        before = UserRead.model_validate(user).model_dump(mode="json")
        password = changes.pop("password", None)
        if password is not None:
            user.password_hash = hash_password(password)
        for field_name, value in changes.items():
            setattr(user, field_name, value)
        session.flush()

        audit_entry = audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="update",
            before=before,
            after=UserRead.model_validate(user).model_dump(mode="json"),
            correlation_id=principal.correlation_id,
        )
        _commit(session, audit_entry)
        session.refresh(user)
        return UserRead.model_validate(user)


class TeamService:
    def list_team(
        self,
        session: Session,
        principal: Principal,
        q: str | None = None,
        page: int | None = None,
        page_size: int | None = None,
    ) -> Page[UserRead]:
        """Active freelance consultants reporting directly to the calling sales manager."""

        stmt: Select[Any] = select(User).where(
            User.role == Role.FREELANCE_CONSULTANT,
            User.manager_id == principal.user_id,
            User.is_active.is_(True),
        )
        return _paginate_users(session, _search(stmt, q), page, page_size)
