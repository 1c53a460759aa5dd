from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, List

from storefront.core.config import settings
from storefront.core.errors import ValidationError

if TYPE_CHECKING:
    from storefront.models.user import User

COMMON_WEAK_PASSWORDS = {
    "password",
    "password1",
    "password123",
    "12345678",
    "123456789",
    "qwerty123",
    "abc12345",
    "letmein1",
    "iloveyou1",
    "admin123",
    "welcome1",
    "passw0rd",
    "trustno1",
    "zaq12wsx",
}

_LETTER_RE = re.compile(r"[A-Za-z]")
_NUMBER_RE = re.compile(r"[0-9]")

MAX_PASSWORD_LENGTH = 128


def _normalize(value: str | None) -> str:
    return (value or "").strip().lower()


def evaluate_password(password: str, *, email: str | None = None) -> List[str]:
    """
    Returns a list of violation codes if the password does not meet policy.
    """
    pw = password or ""
    violations: list[str] = []
    min_length = max(int(getattr(settings, "PASSWORD_MIN_LENGTH", 8) or 0), 1)

    if len(pw) < min_length:
        violations.append("min_length")
    if len(pw) > MAX_PASSWORD_LENGTH:
        violations.append("max_length")
    if not _LETTER_RE.search(pw):
        violations.append("letter")
    if not _NUMBER_RE.search(pw):
        violations.append("number")

    normalized_pw = pw.lower()

    email_norm = _normalize(email)
    local_part = email_norm.split("@")[0] if email_norm else ""
    if email_norm and (email_norm in normalized_pw or (len(local_part) >= 3 and local_part in normalized_pw)):
        violations.append("contains_email")

    if normalized_pw in COMMON_WEAK_PASSWORDS:
        violations.append("denylist_common")

    return violations


def ensure_strong_password(password: str, *, email: str | None = None) -> None:
    violations = evaluate_password(password, email=email)
    if violations:
        raise ValidationError(f"Password does not meet requirements: {', '.join(violations)}")


def mark_password_changed(user: "User") -> None:
    user.password_changed_at = datetime.now(timezone.utc)
