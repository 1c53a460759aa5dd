from __future__ import annotations

from fastapi import status


class AppError(Exception):
    """
    Base class for errors raised by services and surfaced to API clients.

    The message is safe to show to the client; `main.py` turns any AppError into
    the standard failure envelope with `status_code`.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Resource already exists"


class UnauthorizedError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Not authenticated"


class InvalidCredentialsError(UnauthorizedError):
    default_message = "Invalid credentials"


class InvalidRefreshTokenError(UnauthorizedError):
    default_message = "Invalid refresh token"


class InvalidAdminSecretError(UnauthorizedError):
    default_message = "Invalid admin secret key. Access denied."


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Access denied"


class ServiceError(AppError):
    """
    A dependency we call (email provider, media host) is misconfigured or failing.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Internal server error"
