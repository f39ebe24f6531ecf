from __future__ import annotations

from dataclasses import dataclass

from itcrm.core.roles import Role


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller passed explicitly into every scoped operation."""

    user_id: int
    role: Role
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN
