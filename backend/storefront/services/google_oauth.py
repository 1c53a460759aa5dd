from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from storefront.core.config import settings

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_TIMEOUT = 10.0


class GoogleOAuthError(Exception):
    """Raised when the Google sign-in round trip cannot produce a profile."""


@dataclass(frozen=True)
class GoogleOAuthConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: tuple[str, ...] = ("openid", "email", "profile")

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    @classmethod
    def from_settings(cls) -> "GoogleOAuthConfig":
        return cls(
            client_id=settings.GOOGLE_CLIENT_ID,
            client_secret=settings.GOOGLE_CLIENT_SECRET,
            redirect_uri=settings.GOOGLE_CALLBACK_URL,
        )


@dataclass(frozen=True)
class GoogleProfile:
    google_id: str
    email: str
    full_name: str | None
    avatar_url: str | None
    email_verified: bool


class GoogleOAuthClient:
    def __init__(self, config: GoogleOAuthConfig, *, timeout: float = GOOGLE_TIMEOUT) -> None:
        self.config = config
        self.timeout = timeout

    def _require_config(self) -> None:
        if not self.config.is_configured:
            raise GoogleOAuthError("Google OAuth is not configured.")

    def authorization_url(self, state: str) -> str:
        self._require_config()
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": state,
            "access_type": "offline",
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def fetch_profile(self, code: str) -> GoogleProfile:
        """
        Exchanges the authorization code and reads the user's OpenID profile.
        """
        self._require_config()
        if not (code or "").strip():
            raise GoogleOAuthError("Missing authorization code.")

        try:
            with httpx.Client(timeout=self.timeout) as client:
                token_response = client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.config.client_id,
                        "client_secret": self.config.client_secret,
                        "code": code,
                        "redirect_uri": self.config.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                access_token = _json(token_response).get("access_token")
                if not access_token:
                    raise GoogleOAuthError("Google did not return an access token.")

                userinfo_response = client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = _json(userinfo_response)
        except httpx.HTTPError as exc:
            logger.warning("Google OAuth request failed: %s", exc)
            raise GoogleOAuthError("Unable to reach Google.") from exc

        return parse_profile(userinfo)


def _json(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except ValueError as exc:
        raise GoogleOAuthError("Invalid response from Google.") from exc
    if not isinstance(payload, dict):
        raise GoogleOAuthError("Invalid response from Google.")
    return payload


def parse_profile(userinfo: dict) -> GoogleProfile:
    google_id = str(userinfo.get("sub") or userinfo.get("id") or "").strip()
    email = str(userinfo.get("email") or "").strip().lower()
    if not google_id or not email:
        raise GoogleOAuthError("Google profile is missing an id or email.")

    name = userinfo.get("name")
    if not name:
        parts = [userinfo.get("given_name"), userinfo.get("family_name")]
        name = " ".join(p for p in parts if p) or None

    return GoogleProfile(
        google_id=google_id,
        email=email,
        full_name=name,
        avatar_url=userinfo.get("picture") or None,
        email_verified=bool(userinfo.get("email_verified", False)),
    )


def get_google_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(GoogleOAuthConfig.from_settings())
