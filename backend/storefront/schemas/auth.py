from pydantic import EmailStr, Field

from storefront.schemas.common import CamelModel
from storefront.schemas.user import AdminProfileOut, UserOut


class RegisterIn(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    full_name: str | None = Field(default=None, max_length=150)


class LoginIn(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class AdminRegisterIn(RegisterIn):
    admin_secret: str = Field(min_length=1)


class AdminLoginIn(LoginIn):
    admin_secret: str = Field(min_length=1)


class VerifyEmailIn(CamelModel):
    token: str = Field(min_length=1)


class EmailIn(CamelModel):
    email: EmailStr


class ResetPasswordIn(CamelModel):
    token: str = Field(min_length=1)
    new_password: str = Field(min_length=1, max_length=128)


class RefreshTokenIn(CamelModel):
    refresh_token: str | None = None


class UserData(CamelModel):
    user: UserOut


class AuthData(CamelModel):
    user: UserOut
    access_token: str
    refresh_token: str


class RefreshData(CamelModel):
    access_token: str
    refresh_token: str | None = None


class LogoutAllData(CamelModel):
    revoked: int


class CleanupOut(CamelModel):
    success: bool = True
    message: str
    count: int


class AdminProfileData(CamelModel):
    user: AdminProfileOut
