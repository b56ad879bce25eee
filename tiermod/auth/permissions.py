"""Role-based access control (RBAC) logic.

Role hierarchy: admin > moderator > member
"""

from __future__ import annotations

from fastapi import HTTPException, status

from tiermod.auth.models import Role, User


def has_permission(user: User, required_role: Role) -> bool:
    """Check if the user's highest role meets or exceeds *required_role*."""
    return user.role.level >= required_role.level


def require_role(user: User, role: Role) -> None:
    """Validate that a user has at least the given role.

    Raises ``HTTPException(403)`` if the user lacks the required role.

    Usage in a router::

        @router.put("/config")
        async def update_config(user: User = Depends(get_current_user)):
            require_role(user, Role.admin)
            ...
    """
    if not has_permission(user, role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Requires role '{role.value}' or higher",
        )
