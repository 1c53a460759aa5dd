# storefront/dependencies/auth.py
from __future__ import annotations

from datetime import timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from storefront.core.database import get_db
from storefront.core.security import PURPOSE_ACCESS, verify_token_purpose
from storefront.models.user import User
from storefront.services.refresh_tokens import ACCESS_COOKIE_NAME, read_cookie

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _issued_before_password_change(payload: dict, user: User) -> bool:
    changed_at = user.password_changed_at
    if changed_at is None:
        return False
    if changed_at.tzinfo is None:
        changed_at = changed_at.replace(tzinfo=timezone.utc)
    # iat has second precision.
    return int(payload.get("iat") or 0) < int(changed_at.timestamp())


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Validates:
      - Authorization: Bearer <token>, falling back to the accessToken cookie set by OAuth
      - token signature + exp + purpose
      - user exists + is_active
      - token was issued after the last password change
    """
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials
    else:
        token = read_cookie(request, ACCESS_COOKIE_NAME)
    if not token:
        raise _unauthorized("Missing Authorization header")

    try:
        payload = verify_token_purpose(token, expected_purpose=PURPOSE_ACCESS)
    except ValueError:
        raise _unauthorized("Invalid or expired token")

    try:
        user_id = int(payload.get("sub") or 0)
    except (TypeError, ValueError):
        raise _unauthorized("Invalid or expired token")
    if not user_id:
        raise _unauthorized("Invalid or expired token")

    user = db.get(User, user_id)
    if not user:
        raise _unauthorized("User not found")
    if not user.is_active:
        raise _unauthorized("User is inactive")
    if _issued_before_password_change(payload, user):
        raise _unauthorized("Invalid or expired token")

    request.state.user = user
    return user
