from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from storefront.core.security import (
    PURPOSE_EMAIL_VERIFICATION,
    PURPOSE_PASSWORD_RESET,
    create_email_verification_token,
    create_password_reset_token,
    hash_token_id,
    verify_token_purpose,
)
from storefront.models.account_token import AccountToken
from storefront.models.user import User

_TOKEN_FACTORIES = {
    PURPOSE_EMAIL_VERIFICATION: create_email_verification_token,
    PURPOSE_PASSWORD_RESET: create_password_reset_token,
}


def issue_account_token(db: Session, user: User, purpose: str) -> str:
    """
    Generates a new emailed-link token for the user, stores a hashed token id so it
    can be consumed once, and returns the raw token string.
    """
    factory = _TOKEN_FACTORIES.get(purpose)
    if factory is None:
        raise ValueError(f"Unsupported token purpose: {purpose}")

    token, token_id, expires_at = factory(user.email)

    # Remove any previously active tokens so only the latest link works.
    (
        db.query(AccountToken)
        .filter(
            AccountToken.user_id == user.id,
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
        )
        .delete(synchronize_session=False)
    )

    db.add(
        AccountToken(
            user_id=user.id,
            purpose=purpose,
            token_hash=hash_token_id(token_id),
            expires_at=expires_at,
        )
    )
    db.flush()
    return token


def consume_account_token(db: Session, token: str, purpose: str) -> User:
    """
    Validates the JWT, marks its record as used and returns the owning user.
    Raises ValueError if the token is invalid, expired, already used or for another purpose.
    """
    payload = verify_token_purpose(token, expected_purpose=purpose)

    email = str(payload.get("sub") or "").strip().lower()
    jti = payload.get("jti")
    if not email or not jti:
        raise ValueError("Invalid token payload")

    record = (
        db.query(AccountToken)
        .filter(AccountToken.token_hash == hash_token_id(str(jti)), AccountToken.purpose == purpose)
        .first()
    )
    if not record or record.used_at is not None:
        raise ValueError("Invalid or expired token")

    now = datetime.now(timezone.utc)
    expires_at = record.expires_at
    if expires_at is None:
        raise ValueError("Invalid or expired token")
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    if expires_at <= now:
        raise ValueError("Invalid or expired token")

    user = db.get(User, record.user_id)
    if user is None or user.email != email:
        raise ValueError("Invalid or expired token")

    record.used_at = now
    db.add(record)
    return user
