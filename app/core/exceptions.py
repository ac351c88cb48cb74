"""
Identity Exceptions
-------------------
Error taxonomy for the identity and access layer and the FastAPI handler
that renders it as JSON.

Every error carries an HTTP status and a client-facing message. Expired
access tokens use 403 with a fixed message so clients can tell "refresh and
retry" apart from "log in again".
"""

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger


ACCESS_TOKEN_EXPIRED_MESSAGE = "Access token is expired."


class IdentityError(Exception):
    """Base class for all identity layer errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(IdentityError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class UnauthorizedError(IdentityError):
    """Missing, invalid or unrecoverable credentials."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Unauthorized"


class AccessTokenExpiredError(IdentityError):
    """A correctly signed access token whose lifetime has passed."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = ACCESS_TOKEN_EXPIRED_MESSAGE


class ForbiddenError(IdentityError):
    """Authenticated, but not permitted."""

    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(IdentityError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class ConflictError(IdentityError):
    """State-machine violation such as re-accepting an accepted invitation."""

    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict"


class UnprocessableEntityError(IdentityError):
    status_code = 422
    default_message = "Unprocessable entity"


class IntegrityError(IdentityError):
    """
    AEAD tag verification failed while decrypting a protected field.

    Signals a key mismatch or tampering. Never retried, never swallowed.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Stored data failed integrity verification"


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Render an IdentityError as {"message": ...}."""
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    if exc.status_code >= 500:
        logger.error(f"{exc.__class__.__name__} on {request.url.path}: {exc.message}")
    else:
        logger.debug(
            f"{exc.__class__.__name__} ({exc.status_code}) on {request.url.path}: {exc.message}"
        )

    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach identity error handling to an application."""
    app.add_exception_handler(IdentityError, identity_error_handler)
