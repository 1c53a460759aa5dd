from __future__ import annotations

from datetime import datetime

from storefront.models.user import UserRole
from storefront.schemas.common import CamelModel


class UserOut(CamelModel):
    id: int
    email: str
    full_name: str | None = None
    role: UserRole
    email_verified: bool
    is_active: bool
    avatar_url: str | None = None
    created_at: datetime | None = None


class AdminProfileOut(UserOut):
    phone_number: str | None = None
    last_login_at: datetime | None = None
    updated_at: datetime | None = None
