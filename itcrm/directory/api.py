from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from itcrm.api.errors import app_error_response
from itcrm.core.auth import clear_session_cookie, create_session_token, get_current_principal, set_session_cookie
from itcrm.core.database import get_db
from itcrm.core.errors import AppError
from itcrm.core.roles import Role
from itcrm.core.schemas import Page
from itcrm.directory.schemas import LoginRequest, RegisterRequest, SessionUserRead, UserCreate, UserRead, UserUpdate
from itcrm.directory.service import AuthService, TeamService, UserService
from itcrm.platform.security.context import Principal
from itcrm.platform.security.permissions import require_permission

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
users_router = APIRouter(prefix="/api/admin/users", tags=["directory.users"])
team_router = APIRouter(prefix="/api/users", tags=["directory.team"])

auth_service = AuthService()
user_service = UserService()
team_service = TeamService()


@auth_router.post("/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def register(request: Request, dto: RegisterRequest, db: Session = Depends(get_db)) -> UserRead | JSONResponse:
    try:
        return auth_service.register(db, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@auth_router.post("/login", response_model=SessionUserRead)
def login(
    request: Request,
    response: Response,
    dto: LoginRequest,
    db: Session = Depends(get_db),
) -> SessionUserRead | JSONResponse:
    try:
        user = auth_service.login(db, dto)
    except AppError as exc:
        return app_error_response(request, exc)
    set_session_cookie(response, create_session_token(user.id, user.role))
    return user


@auth_router.post("/logout")
def logout(response: Response) -> dict[str, bool]:
    clear_session_cookie(response)
    return {"ok": True}


@auth_router.get("/me", response_model=SessionUserRead)
def me(
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> SessionUserRead | JSONResponse:
    try:
        return auth_service.me(db, principal)
    except AppError as exc:
        return app_error_response(request, exc)


@users_router.get("", response_model=Page[UserRead])
def list_users(
    request: Request,
    q: str | None = Query(default=None),
    role: Role | None = Query(default=None),
    is_active: bool | None = Query(default=None, alias="isActive"),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[UserRead] | JSONResponse:
    try:
        require_permission(principal, "directory.users.manage")
        return user_service.list_users(
            db,
            filters={"q": q, "role": role, "is_active": is_active},
            page=page,
            page_size=page_size,
        )
    except AppError as exc:
        return app_error_response(request, exc)


@users_router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    request: Request,
    dto: UserCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> UserRead | JSONResponse:
    try:
        require_permission(principal, "directory.users.manage")
        return user_service.create_user(db, principal, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@users_router.patch("/{user_id}", response_model=UserRead)
def patch_user(
    request: Request,
    user_id: int,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> UserRead | JSONResponse:
    try:
        require_permission(principal, "directory.users.manage")
        return user_service.update_user(db, principal, user_id, dto)
    except AppError as exc:
        return app_error_response(request, exc)


@team_router.get("/team", response_model=Page[UserRead])
def list_team(
    request: Request,
    q: str | None = Query(default=None),
    page: int | None = Query(default=None),
    page_size: int | None = Query(default=None, alias="pageSize"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> Page[UserRead] | JSONResponse:
    try:
        require_permission(principal, "directory.team.read")
        return team_service.list_team(db, principal, q=q, page=page, page_size=page_size)
    except AppError as exc:
        return app_error_response(request, exc)
