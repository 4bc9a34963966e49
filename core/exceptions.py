"""
Error taxonomy for the ordering core.

Every business-rule violation is raised as a subclass of AppError. AppError is an
HTTPException so routers can let it propagate, and the handler registered in main.py
renders it as {"error": kind, "detail": reason}.
"""

from fastapi import HTTPException
from starlette import status


class AppError(HTTPException):
    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, detail: str):
        super().__init__(status_code=self.status_code, detail=detail)


class ValidationError(AppError):
    """Malformed or missing input."""
    kind = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidInputError(AppError):
    kind = "invalid_input"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    """Entity absent or soft-deleted."""
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ForbiddenError(AppError):
    """Authenticated, but not allowed to act on this entity."""
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidStateError(AppError):
    """Well-formed request against an entity in the wrong lifecycle state."""
    kind = "invalid_state"
    status_code = status.HTTP_409_CONFLICT


class InsufficientCoinsError(AppError):
    kind = "insufficient_coins"
    status_code = status.HTTP_400_BAD_REQUEST


class UnsupportedFulfillmentError(AppError):
    kind = "unsupported_fulfillment"
    status_code = status.HTTP_400_BAD_REQUEST


class ServerError(AppError):
    """Storage or other unexpected failure. The original message is kept for the logs."""
    kind = "server_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
