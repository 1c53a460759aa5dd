from __future__ import annotations

from fastapi import Depends, HTTPException, status

from storefront.dependencies.auth import get_current_user
from storefront.models.user import User


def require_admin_user(current_user: User = Depends(get_current_user)) -> User:
    """
    Ensure the authenticated user has the ADMIN role.
    """
    if not current_user.is_admin:
        raise HTTPException(status.HTTP_403_FORBIDDEN, detail="Access denied. Admin privileges required.")
    return current_user
