"""
shared/utils/errors.py
Domain exceptions raised by the lifecycle managers.
main.py renders them as {"detail": ..., "code": ...} with the matching HTTP status.
"""

from typing import Optional

from fastapi import status


class DomainError(Exception):
    """Base exception for all domain-specific errors."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "domain_error"

    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class NotFoundError(DomainError):
    """Referenced entity does not exist."""
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class ForbiddenError(DomainError):
    """Actor has no rights over the entity."""
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class ConflictError(DomainError):
    """Duplicate of an existing record."""
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"


class InvalidInputError(DomainError):
    """Malformed or out-of-range request data."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_input"


class InvalidStateError(DomainError):
    """Operation not valid for the entity's current status (includes stock and capacity)."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_state"
