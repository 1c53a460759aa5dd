# storefront/services/auth.py
"""
Authentication and session lifecycle.

Responsibilities:
- Verifying local and admin credentials
- Issuing access/refresh token pairs and refreshing access tokens
- Registration, email verification and password reset
- Turning a Google profile into a local user + token pair
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.errors import (
    ConflictError,
    InvalidAdminSecretError,
    InvalidCredentialsError,
    InvalidRefreshTokenError,
    ServiceError,
    ValidationError,
)
from storefront.core.password_policy import ensure_strong_password, mark_password_changed
from storefront.core.security import (
    PURPOSE_EMAIL_VERIFICATION,
    PURPOSE_PASSWORD_RESET,
    create_access_token,
    hash_password,
    secrets_match,
    verify_password,
)
from storefront.models.user import User, UserRole
from storefront.services.account_tokens import consume_account_token, issue_account_token
from storefront.services.email import EmailDeliveryError, EmailNotConfiguredError, send_email
from storefront.services.google_oauth import GoogleProfile
from storefront.services.refresh_tokens import (
    get_valid_refresh_token,
    issue_refresh_token,
    revoke_all_user_refresh_tokens,
    revoke_refresh_token,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    # Only set when REFRESH_TOKEN_ROTATION is on.
    refresh_token: Optional[str] = None


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == normalize_email(email)).first()


# -----------------------------
# Outgoing email
# -----------------------------
def _deliver(to_email: str, subject: str, body: str) -> None:
    try:
        msg_id = send_email(to_email=to_email, subject=subject, body=body)
    except EmailNotConfiguredError as e:
        logger.error("Email delivery not configured: %s", e)
        raise ServiceError(f"Email delivery not configured: {e}")
    except EmailDeliveryError as e:
        raise ServiceError(str(e))
    # Never log the link itself; it carries the token.
    logger.info("Email queued to=%s subject=%r msg_id=%s", to_email, subject, msg_id)


def send_verification_email(email: str, token: str) -> None:
    link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    body = "\n".join(
        [
            "Welcome!",
            "",
            "Please verify your email address by opening the link below:",
            link,
            "",
            f"The link expires in {settings.EMAIL_VERIFY_TOKEN_EXPIRE_HOURS} hours.",
            "If you did not create this account, you can ignore this email.",
        ]
    )
    _deliver(email, "Verify your email address", body)


def send_password_reset_email(email: str, token: str) -> None:
    link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    body = "\n".join(
        [
            "We received a request to reset your password.",
            "",
            "Choose a new password using the link below:",
            link,
            "",
            f"The link expires in {settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES} minutes.",
            "If you did not ask for this, you can ignore this email.",
        ]
    )
    _deliver(email, "Reset your password", body)


# -----------------------------
# Credential verification
# -----------------------------
def authenticate_user(db: Session, email: str, password: str) -> User:
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        raise InvalidCredentialsError()
    if not verify_password(password, user.password_hash):
        raise InvalidCredentialsError()
    if not user.email_verified:
        raise InvalidCredentialsError("Invalid credentials or email not verified")
    return user


def check_admin_secret(admin_secret: str | None) -> None:
    if not secrets_match(admin_secret, settings.ADMIN_SECRET_KEY):
        raise InvalidAdminSecretError()


def authenticate_admin(db: Session, email: str, password: str, admin_secret: str) -> User:
    check_admin_secret(admin_secret)
    user = get_user_by_email(db, email)
    if not user or not user.is_active or user.role != UserRole.ADMIN:
        raise InvalidCredentialsError("Invalid admin credentials or access denied")
    if not verify_password(password, user.password_hash):
        raise InvalidCredentialsError("Invalid admin credentials or access denied")
    return user


# -----------------------------
# Token issuing
# -----------------------------
def issue_token_pair(db: Session, user: User) -> TokenPair:
    access_token = create_access_token(user_id=user.id, email=user.email, role=user.role.value)
    user.last_login_at = datetime.now(timezone.utc)
    # issue_refresh_token commits, which also persists last_login_at.
    refresh_token = issue_refresh_token(db, user_id=user.id)
    return TokenPair(access_token=access_token, refresh_token=refresh_token)


def refresh_access_token(db: Session, raw_refresh_token: str | None) -> RefreshResult:
    rt = get_valid_refresh_token(db, raw_refresh_token or "")
    if not rt:
        raise InvalidRefreshTokenError()

    user = db.get(User, rt.user_id)
    if not user or not user.is_active:
        raise InvalidRefreshTokenError()

    access_token = create_access_token(user_id=user.id, email=user.email, role=user.role.value)
    if not settings.REFRESH_TOKEN_ROTATION:
        return RefreshResult(access_token=access_token)

    revoke_refresh_token(db, rt)
    return RefreshResult(access_token=access_token, refresh_token=issue_refresh_token(db, user_id=user.id))


# -----------------------------
# Registration / verification
# -----------------------------
def _create_user(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str | None,
    role: UserRole,
    verified: bool,
) -> User:
    email = normalize_email(email)
    ensure_strong_password(password, email=email)

    if get_user_by_email(db, email):
        label = "Admin" if role == UserRole.ADMIN else "User"
        raise ConflictError(f"{label} with this email already exists")

    now = datetime.now(timezone.utc)
    user = User(
        email=email,
        full_name=(full_name or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
        email_verified=verified,
        email_verified_at=now if verified else None,
    )
    mark_password_changed(user)
    db.add(user)
    db.flush()
    return user


def register(db: Session, *, email: str, password: str, full_name: str | None = None) -> User:
    user = _create_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=UserRole.CUSTOMER,
        verified=False,
    )
    try:
        token = issue_account_token(db, user, PURPOSE_EMAIL_VERIFICATION)
        send_verification_email(user.email, token)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(user)
    logger.info("Registered user id=%s", user.id)
    return user


def admin_register(
    db: Session,
    *,
    email: str,
    password: str,
    admin_secret: str,
    full_name: str | None = None,
) -> tuple[User, TokenPair]:
    check_admin_secret(admin_secret)
    user = _create_user(
        db,
        email=email,
        password=password,
        full_name=full_name,
        role=UserRole.ADMIN,
        verified=True,
    )
    db.commit()
    db.refresh(user)
    logger.info("Registered admin id=%s", user.id)
    return user, issue_token_pair(db, user)


def verify_email(db: Session, token: str) -> tuple[User, TokenPair]:
    try:
        user = consume_account_token(db, token, PURPOSE_EMAIL_VERIFICATION)
    except ValueError:
        db.rollback()
        raise ValidationError("Invalid or expired verification token")

    if not user.is_active:
        db.rollback()
        raise ValidationError("Invalid or expired verification token")

    if not user.email_verified:
        user.email_verified = True
        user.email_verified_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    return user, issue_token_pair(db, user)


def resend_verification(db: Session, email: str) -> None:
    user = get_user_by_email(db, email)
    if not user or not user.is_active:
        # Same response as a successful send, so addresses can't be probed.
        return
    if user.email_verified:
        raise ValidationError("Email is already verified")

    try:
        token = issue_account_token(db, user, PURPOSE_EMAIL_VERIFICATION)
        send_verification_email(user.email, token)
        db.commit()
    except Exception:
        db.rollback()
        raise


# -----------------------------
# Password reset
# -----------------------------
def forgot_password(db: Session, email: str) -> None:
    user = get_user_by_email(db, email)
    if not user or not user.is_active or not user.password_hash:
        return

    try:
        token = issue_account_token(db, user, PURPOSE_PASSWORD_RESET)
        send_password_reset_email(user.email, token)
        db.commit()
    except Exception:
        db.rollback()
        raise


def reset_password(db: Session, token: str, new_password: str) -> User:
    try:
        user = consume_account_token(db, token, PURPOSE_PASSWORD_RESET)
    except ValueError:
        db.rollback()
        raise ValidationError("Invalid or expired reset token")

    try:
        ensure_strong_password(new_password, email=user.email)
    except ValidationError:
        db.rollback()
        raise

    user.password_hash = hash_password(new_password)
    mark_password_changed(user)
    db.commit()

    # A new password signs the account out everywhere.
    revoke_all_user_refresh_tokens(db, user.id)
    db.refresh(user)
    return user


# -----------------------------
# OAuth
# -----------------------------
def login_with_google_profile(db: Session, profile: GoogleProfile) -> tuple[User, TokenPair]:
    """
    Link or create the local user from a Google-verified email and log in.
    """
    user = db.query(User).filter(User.google_id == profile.google_id).first()
    if user is None:
        if not profile.email_verified:
            raise InvalidCredentialsError("Google account email is not verified")
        user = get_user_by_email(db, profile.email)
        if user is not None:
            user.google_id = profile.google_id
            logger.info("Linked Google account to user id=%s", user.id)

    if user is None:
        now = datetime.now(timezone.utc)
        user = User(
            email=normalize_email(profile.email),
            full_name=profile.full_name,
            password_hash=None,
            role=UserRole.CUSTOMER,
            google_id=profile.google_id,
            avatar_url=profile.avatar_url,
            is_active=True,
            email_verified=True,
            email_verified_at=now,
        )
        db.add(user)
        db.flush()
        logger.info("Provisioned Google user id=%s", user.id)

    if not user.is_active:
        db.rollback()
        raise InvalidCredentialsError("Account is inactive")

    if not user.email_verified:
        user.email_verified = True
        user.email_verified_at = datetime.now(timezone.utc)
    if profile.avatar_url and not user.avatar_url:
        user.avatar_url = profile.avatar_url

    db.commit()
    db.refresh(user)
    return user, issue_token_pair(db, user)
