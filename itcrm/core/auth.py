from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Request, Response
from jose import JWTError, jwt

from itcrm.context import get_correlation_id
from itcrm.core.config import get_settings
from itcrm.core.errors import UnauthenticatedError
from itcrm.core.roles import Role
from itcrm.platform.security.context import Principal


def create_session_token(user_id: int, role: Role) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.session_ttl_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> Principal:
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise UnauthenticatedError() from exc

    subject = str(payload.get("sub", ""))
    if not subject.isdigit() or int(subject) <= 0:
        raise UnauthenticatedError()
    try:
        role = Role(payload.get("role"))
    except ValueError as exc:
        raise UnauthenticatedError() from exc

    return Principal(user_id=int(subject), role=role, correlation_id=get_correlation_id())


def set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.app_env.lower() in {"prod", "production"},
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(settings.session_cookie_name, path="/", httponly=True, samesite="lax")


def extract_token(request: Request) -> tuple[str | None, bool]:
    """Return the presented token and whether it came from the session cookie."""

    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip() or None, False
    return request.cookies.get(get_settings().session_cookie_name), True


def get_current_principal(request: Request, response: Response) -> Principal:
    token, from_cookie = extract_token(request)
    if not token:
        raise UnauthenticatedError()

    principal = decode_session_token(token)
    # Sliding session: every authenticated cookie request pushes the expiry forward.
    if from_cookie:
        refreshed = create_session_token(principal.user_id, principal.role)
        set_session_cookie(response, refreshed)
        # Handlers that answer with their own error response re-attach it from here.
        request.state.refreshed_session_token = refreshed
    request.state.user_id = principal.user_id
    request.state.role = principal.role.value
    return principal
