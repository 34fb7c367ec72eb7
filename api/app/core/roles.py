"""Role checks for the two actor roles."""
from __future__ import annotations

from typing import TYPE_CHECKING

from app.models.user import UserRole

if TYPE_CHECKING:
    from app.models.user import User


def normalize_role(value: str | None) -> str | None:
    """Map free-form role text ("admin", " ADMIN ") onto a UserRole value."""
    if not value:
        return None
    lowered = value.strip().lower()
    for role in UserRole:
        if role.value.lower() == lowered:
            return role.value
    return None


def is_admin(user: "User") -> bool:
    return normalize_role(user.role) == UserRole.ADMIN.value
