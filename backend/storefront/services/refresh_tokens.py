from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import Request, Response
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.security import generate_refresh_token, hash_refresh_token
from storefront.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)

ACCESS_COOKIE_NAME = "accessToken"
REFRESH_COOKIE_NAME = "refreshToken"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite round-trips tz-aware datetimes as naive; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# -----------------------------
# Refresh token settings
# -----------------------------
def refresh_token_expiry() -> datetime:
    return _now() + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)


def refresh_cookie_max_age_seconds() -> int:
    return settings.REFRESH_TOKEN_EXPIRE_DAYS * 24 * 3600


def access_cookie_max_age_seconds() -> int:
    return settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60


# -----------------------------
# Session store operations
# -----------------------------
def issue_refresh_token(db: Session, user_id: int) -> str:
    """
    Creates exactly one new refresh token row for the user and returns the raw value.
    Existing tokens stay valid so the user can be signed in on several devices.
    """
    raw = generate_refresh_token()

    db.add(
        RefreshToken(
            user_id=user_id,
            token_hash=hash_refresh_token(raw),
            expires_at=refresh_token_expiry(),
            revoked=False,
            revoked_at=None,
        )
    )
    db.commit()
    return raw


def is_refresh_token_usable(rt: RefreshToken, now: datetime | None = None) -> bool:
    if rt.revoked:
        return False
    if rt.expires_at is None:
        return False
    return _as_utc(rt.expires_at) > (now or _now())


def get_valid_refresh_token(db: Session, raw_refresh_token: str) -> RefreshToken | None:
    if not raw_refresh_token:
        return None
    token_hash = hash_refresh_token(raw_refresh_token)
    rt = db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()
    if not rt or not is_refresh_token_usable(rt):
        return None
    return rt


def _revoke(rt: RefreshToken, now: datetime) -> None:
    rt.revoked = True
    rt.revoked_at = now


def revoke_refresh_token(db: Session, rt: RefreshToken) -> None:
    if rt.revoked:
        return
    _revoke(rt, _now())
    db.commit()


def revoke_user_refresh_token(db: Session, user_id: int, raw_refresh_token: str | None) -> bool:
    """
    Revokes the user's matching token. Unknown, foreign or already revoked tokens are
    a no-op so logout stays idempotent. Returns whether anything was revoked.
    """
    if not raw_refresh_token:
        return False
    token_hash = hash_refresh_token(raw_refresh_token)
    rt = (
        db.query(RefreshToken)
        .filter(
            RefreshToken.token_hash == token_hash,
            RefreshToken.user_id == user_id,
            RefreshToken.revoked.is_(False),
        )
        .first()
    )
    if not rt:
        return False
    _revoke(rt, _now())
    db.commit()
    return True


def revoke_all_user_refresh_tokens(db: Session, user_id: int) -> int:
    now = _now()
    count = (
        db.query(RefreshToken)
        .filter(RefreshToken.user_id == user_id, RefreshToken.revoked.is_(False))
        .update({RefreshToken.revoked: True, RefreshToken.revoked_at: now}, synchronize_session=False)
    )
    db.commit()
    logger.info("Revoked %s refresh tokens for user_id=%s", count, user_id)
    return int(count or 0)


def delete_expired_refresh_tokens(db: Session, now: datetime | None = None) -> int:
    """
    Deletes every refresh token past its expiry, whoever owns it.
    """
    cutoff = now or _now()
    count = (
        db.query(RefreshToken)
        .filter(RefreshToken.expires_at <= cutoff)
        .delete(synchronize_session=False)
    )
    if count:
        db.commit()
    logger.info("Deleted %s expired refresh tokens", count)
    return int(count or 0)


# -----------------------------
# Cookie helpers
# -----------------------------
def cookie_secure() -> bool:
    # Prod => HTTPS => Secure cookies. Dev http://localhost => must be False.
    return settings.is_prod


def cookie_samesite() -> str:
    v = str(getattr(settings, "AUTH_COOKIE_SAMESITE", "lax")).lower().strip()
    if v not in {"lax", "strict", "none"}:
        return "lax"
    return v


def set_auth_cookies(resp: Response, access_token: str, raw_refresh_token: str) -> None:
    common = {
        "httponly": True,
        "secure": cookie_secure(),
        "samesite": cookie_samesite(),
        "domain": settings.AUTH_COOKIE_DOMAIN,
        "path": "/",
    }
    resp.set_cookie(
        key=ACCESS_COOKIE_NAME,
        value=access_token,
        max_age=access_cookie_max_age_seconds(),
        **common,
    )
    resp.set_cookie(
        key=REFRESH_COOKIE_NAME,
        value=raw_refresh_token,
        max_age=refresh_cookie_max_age_seconds(),
        **common,
    )


def clear_auth_cookies(resp: Response) -> None:
    for key in (ACCESS_COOKIE_NAME, REFRESH_COOKIE_NAME):
        resp.delete_cookie(key=key, path="/", domain=settings.AUTH_COOKIE_DOMAIN)


def read_cookie(req: Request, name: str) -> str | None:
    val = req.cookies.get(name)
    if not val:
        return None
    val = val.strip()
    return val or None
