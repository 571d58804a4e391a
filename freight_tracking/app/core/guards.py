"""
Security guards for role-based access control.
"""

from typing import List
from fastapi import Depends, HTTPException, status
from freight_tracking.app.models.enums import UserRole
from freight_tracking.app.core.dependencies import get_current_user


DRIVER_ROLES = [UserRole.DRIVER, UserRole.AFFILIATED_DRIVER]
OPERATOR_ROLES = [UserRole.OPERATOR, UserRole.ADMIN]


def require_role(allowed_roles: List[UserRole]):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/driver/location")
        async def report_location(current_user: dict = Depends(require_role(DRIVER_ROLES))):
            ...

    Raises:
        HTTPException 403 if user role is not in allowed_roles
    """
    async def role_checker(current_user: dict = Depends(get_current_user)) -> dict:
        user_role_str = current_user.get("role")

        if not user_role_str:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Role information missing from token"
            )

        try:
            user_role = UserRole(user_role_str)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid role in token"
            )

        if user_role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join([r.value for r in allowed_roles])}"
            )

        return current_user

    return role_checker
