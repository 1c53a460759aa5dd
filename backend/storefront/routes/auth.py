# storefront/routes/auth.py
import logging
import secrets

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from storefront.core.config import settings
from storefront.core.database import get_db
from storefront.core.errors import AppError
from storefront.core.rate_limit import maybe_limit
from storefront.dependencies.admin import require_admin_user
from storefront.dependencies.auth import get_current_user
from storefront.models.user import User
from storefront.schemas.auth import (
    AdminLoginIn,
    AdminProfileData,
    AdminRegisterIn,
    AuthData,
    CleanupOut,
    EmailIn,
    LoginIn,
    LogoutAllData,
    RefreshData,
    RefreshTokenIn,
    RegisterIn,
    ResetPasswordIn,
    UserData,
    VerifyEmailIn,
)
from storefront.schemas.common import Envelope, MessageOut, ok
from storefront.services import auth as auth_service
from storefront.services.google_oauth import GoogleOAuthClient, GoogleOAuthError, get_google_client
from storefront.services.refresh_tokens import (
    REFRESH_COOKIE_NAME,
    clear_auth_cookies,
    delete_expired_refresh_tokens,
    read_cookie,
    revoke_all_user_refresh_tokens,
    revoke_user_refresh_token,
    set_auth_cookies,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_STATE_COOKIE = "oauth_state"
OAUTH_STATE_MAX_AGE_SECONDS = 600


def _auth_payload(user: User, tokens: auth_service.TokenPair) -> dict:
    return {"user": user, "access_token": tokens.access_token, "refresh_token": tokens.refresh_token}


def _frontend_url(path: str) -> str:
    return f"{settings.FRONTEND_URL}{path}"


# -----------------------------
# Local auth
# -----------------------------
@router.post("/register", response_model=Envelope[UserData], status_code=status.HTTP_201_CREATED)
@maybe_limit("5/minute")
def register(request: Request, payload: RegisterIn, db: Session = Depends(get_db)):
    user = auth_service.register(
        db,
        email=payload.email,
        password=payload.password,
        full_name=payload.full_name,
    )
    return ok(
        "Registration successful. Please check your email to verify your account.",
        {"user": user},
    )


@router.post("/login", response_model=Envelope[AuthData])
@maybe_limit("10/minute")
def login(request: Request, payload: LoginIn, db: Session = Depends(get_db)):
    user = auth_service.authenticate_user(db, payload.email, payload.password)
    tokens = auth_service.issue_token_pair(db, user)
    return ok("Login successful", _auth_payload(user, tokens))


@router.get("/me", response_model=Envelope[UserData])
def me(user: User = Depends(get_current_user)):
    return ok("User profile retrieved successfully", {"user": user})


# -----------------------------
# Admin auth
# -----------------------------
@router.post("/admin/register", response_model=Envelope[AuthData], status_code=status.HTTP_201_CREATED)
@maybe_limit("3/minute")
def admin_register(request: Request, payload: AdminRegisterIn, db: Session = Depends(get_db)):
    user, tokens = auth_service.admin_register(
        db,
        email=payload.email,
        password=payload.password,
        admin_secret=payload.admin_secret,
        full_name=payload.full_name,
    )
    return ok("Admin account created successfully. You are now logged in.", _auth_payload(user, tokens))


@router.post("/admin/login", response_model=Envelope[AuthData])
@maybe_limit("5/minute")
def admin_login(request: Request, payload: AdminLoginIn, db: Session = Depends(get_db)):
    user = auth_service.authenticate_admin(db, payload.email, payload.password, payload.admin_secret)
    tokens = auth_service.issue_token_pair(db, user)
    return ok("Admin login successful", _auth_payload(user, tokens))


@router.get("/admin/profile", response_model=Envelope[AdminProfileData])
def admin_profile(admin: User = Depends(require_admin_user)):
    return ok("Admin profile retrieved successfully", {"user": admin})


# -----------------------------
# Google OAuth
# -----------------------------
@router.get("/google")
def google_auth(client: GoogleOAuthClient = Depends(get_google_client)):
    state = secrets.token_urlsafe(24)
    try:
        url = client.authorization_url(state)
    except GoogleOAuthError as exc:
        logger.error("Google OAuth start failed: %s", exc)
        return RedirectResponse(_frontend_url("/auth/error?message=authentication_failed"), status_code=302)

    resp = RedirectResponse(url, status_code=302)
    resp.set_cookie(
        key=OAUTH_STATE_COOKIE,
        value=state,
        max_age=OAUTH_STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.is_prod,
        samesite="lax",
        path="/auth/google",
    )
    return resp


@router.get("/google/redirect")
def google_auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
    client: GoogleOAuthClient = Depends(get_google_client),
):
    """
    Browser lands here mid-redirect, so every outcome is a redirect, never a raised error.
    """
    failure_url = _frontend_url("/auth/error?message=authentication_failed")

    expected_state = read_cookie(request, OAUTH_STATE_COOKIE)
    if error or not code or not state or not expected_state or not secrets.compare_digest(state, expected_state):
        logger.warning("Google OAuth callback rejected (error=%s, state_ok=%s)", error, bool(expected_state))
        resp = RedirectResponse(failure_url, status_code=302)
    else:
        try:
            profile = client.fetch_profile(code)
            _, tokens = auth_service.login_with_google_profile(db, profile)
        except (GoogleOAuthError, AppError) as exc:
            logger.warning("Google OAuth login failed: %s", exc)
            resp = RedirectResponse(failure_url, status_code=302)
        except Exception:  # noqa: BLE001
            logger.exception("Google OAuth callback crashed")
            resp = RedirectResponse(_frontend_url("/auth/error?message=server_error"), status_code=302)
        else:
            resp = RedirectResponse(_frontend_url("/auth/success"), status_code=302)
            set_auth_cookies(resp, tokens.access_token, tokens.refresh_token)

    resp.delete_cookie(OAUTH_STATE_COOKIE, path="/auth/google")
    return resp


@router.get("/google/status", response_model=Envelope[UserData])
def google_status(user: User = Depends(get_current_user)):
    return ok("User is authenticated", {"user": user})


@router.get("/google/failure")
def google_failure():
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"success": False, "message": "Google authentication failed", "statusCode": 401},
    )


# -----------------------------
# Email verification / password reset
# -----------------------------
@router.post("/verify-email", response_model=Envelope[AuthData])
@maybe_limit("5/minute")
def verify_email(request: Request, payload: VerifyEmailIn, db: Session = Depends(get_db)):
    user, tokens = auth_service.verify_email(db, payload.token)
    return ok("Email verified successfully. You are now logged in.", _auth_payload(user, tokens))


@router.get("/verify-email", response_model=Envelope[AuthData])
@maybe_limit("5/minute")
def verify_email_link(request: Request, token: str = Query(min_length=1), db: Session = Depends(get_db)):
    user, tokens = auth_service.verify_email(db, token)
    return ok("Email verified successfully. You are now logged in.", _auth_payload(user, tokens))


@router.post("/resend-verification", response_model=MessageOut)
@maybe_limit("3/minute")
def resend_verification(request: Request, payload: EmailIn, db: Session = Depends(get_db)):
    auth_service.resend_verification(db, payload.email)
    return ok("Verification email has been sent.")


@router.post("/forgot-password", response_model=MessageOut)
@maybe_limit("3/minute")
def forgot_password(request: Request, payload: EmailIn, db: Session = Depends(get_db)):
    auth_service.forgot_password(db, payload.email)
    return ok("If the email exists, a password reset link has been sent.")


@router.post("/reset-password", response_model=MessageOut)
@maybe_limit("5/minute")
def reset_password(request: Request, payload: ResetPasswordIn, db: Session = Depends(get_db)):
    auth_service.reset_password(db, payload.token, payload.new_password)
    return ok("Password reset successful. Please login with your new password.")


# -----------------------------
# Token management
# -----------------------------
@router.post("/refresh-token", response_model=Envelope[RefreshData])
@maybe_limit("10/minute")
def refresh_token(
    request: Request,
    response: Response,
    payload: RefreshTokenIn | None = None,
    db: Session = Depends(get_db),
):
    from_cookie = read_cookie(request, REFRESH_COOKIE_NAME)
    raw = (payload.refresh_token if payload else None) or from_cookie

    result = auth_service.refresh_access_token(db, raw)
    if result.refresh_token and from_cookie:
        set_auth_cookies(response, result.access_token, result.refresh_token)

    return ok(
        "Token refreshed successfully",
        {"access_token": result.access_token, "refresh_token": result.refresh_token},
    )


@router.post("/logout", response_model=MessageOut)
def logout(
    request: Request,
    response: Response,
    payload: RefreshTokenIn | None = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    raw = (payload.refresh_token if payload else None) or read_cookie(request, REFRESH_COOKIE_NAME)
    revoke_user_refresh_token(db, user.id, raw)
    clear_auth_cookies(response)
    return ok("Logged out successfully")


@router.delete("/logout-all", response_model=Envelope[LogoutAllData])
def logout_all(
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    count = revoke_all_user_refresh_tokens(db, user.id)
    clear_auth_cookies(response)
    return ok("Logged out from all devices successfully", {"revoked": count})


@router.delete("/cleanup-tokens", response_model=CleanupOut)
@maybe_limit("1/5minutes")
def cleanup_tokens(
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin_user),
):
    count = delete_expired_refresh_tokens(db)
    logger.info("Admin id=%s cleaned up %s expired refresh tokens", admin.id, count)
    return {"success": True, "message": f"Cleaned up {count} expired refresh tokens", "count": count}
