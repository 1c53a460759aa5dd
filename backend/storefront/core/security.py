# storefront/core/security.py
from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from storefront.core.config import settings

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")

PURPOSE_ACCESS = "access"
PURPOSE_EMAIL_VERIFICATION = "email_verification"
PURPOSE_PASSWORD_RESET = "password_reset"


# -------------------------
# Password hashing
# -------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


# -------------------------
# JWT helpers
# -------------------------
def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _require_jwt_secret() -> None:
    if not settings.JWT_SECRET or not settings.JWT_SECRET.strip():
        raise RuntimeError("JWT_SECRET must be set (auth is required).")


def create_access_token(*, user_id: int, email: str, role: str) -> str:
    """
    Short-lived access token: Authorization: Bearer <token> (or the accessToken cookie).
    """
    _require_jwt_secret()

    now = _now_utc()
    exp = now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "purpose": PURPOSE_ACCESS,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }

    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_account_token(email: str, purpose: str, expires_in: timedelta) -> tuple[str, str, datetime]:
    """
    Single-use token for emailed links (verification, password reset).

    Returns (token, jti, expires_at). Only a hash of the jti is persisted so the
    link can be invalidated after use.
    """
    _require_jwt_secret()

    now = _now_utc()
    exp = now + expires_in
    jti = uuid.uuid4().hex

    payload = {
        "sub": email,
        "purpose": purpose,
        "jti": jti,
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }

    token = jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    return token, jti, exp


def create_email_verification_token(email: str) -> tuple[str, str, datetime]:
    return create_account_token(
        email,
        PURPOSE_EMAIL_VERIFICATION,
        timedelta(hours=settings.EMAIL_VERIFY_TOKEN_EXPIRE_HOURS),
    )


def create_password_reset_token(email: str) -> tuple[str, str, datetime]:
    return create_account_token(
        email,
        PURPOSE_PASSWORD_RESET,
        timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
    )


def decode_token(token: str) -> dict[str, Any]:
    _require_jwt_secret()
    # Let callers decide how to handle JWTError
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def verify_token_purpose(token: str, expected_purpose: str) -> dict[str, Any]:
    try:
        payload = decode_token(token)
    except JWTError:
        raise ValueError("Invalid or expired token")

    if payload.get("purpose") != expected_purpose:
        raise ValueError("Invalid token purpose")

    return payload


# -------------------------
# Opaque token helpers
# -------------------------
def generate_refresh_token() -> str:
    """
    Raw refresh token, handed to the client once. The database keeps only its hash.
    """
    return secrets.token_urlsafe(48)


def hash_refresh_token(raw_token: str) -> str:
    """
    HMAC keyed by JWT_SECRET so a leaked table can't be brute-forced offline.
    """
    _require_jwt_secret()
    secret = settings.JWT_SECRET.encode("utf-8")
    return hmac.new(secret, raw_token.encode("utf-8"), hashlib.sha256).hexdigest()


def hash_token_id(token_id: str) -> str:
    return hashlib.sha256(token_id.encode("utf-8")).hexdigest()


def secrets_match(provided: str | None, expected: str | None) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
