# app/agreements/exceptions.py

"""
Custom exceptions for the Agreements module.

Every failure surfaced by the agreement services derives from
AgreementBaseException and is mapped to an HTTP status by
convert_to_http_exception at the router boundary.
"""

from typing import Optional
from fastapi import HTTPException, status

SIGNING_LINK_INVALID = "Signing link is invalid or has expired"


class AgreementBaseException(Exception):
    """Base exception for all Agreement-related errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AgreementBaseException):
    """Raised when input is missing, empty or malformed."""


class IntegrityError(AgreementBaseException):
    """Raised when a cross-record invariant would be violated."""


class NotFoundError(AgreementBaseException):
    """Raised when a referenced entity does not exist."""
    def __init__(self, entity: str, entity_id: Optional[int] = None):
        msg = f"{entity} not found" if entity_id is None else f"{entity} with ID {entity_id} not found"
        super().__init__(msg, {"entity": entity, "id": entity_id})


class StateConflictError(AgreementBaseException):
    """Raised when a requested transition is not allowed from the current status."""
    def __init__(self, agreement_id: int, current_status: str, attempted: str):
        msg = f"Cannot {attempted} agreement {agreement_id} while it is {current_status}"
        super().__init__(
            msg,
            {"agreement_id": agreement_id, "current_status": current_status, "attempted": attempted},
        )


class InvalidTokenError(AgreementBaseException):
    """Raised when a signing token is wrong, consumed or expired.

    The message never reveals which of those applies.
    """
    def __init__(self):
        super().__init__(SIGNING_LINK_INVALID)


class ImmutableStateError(AgreementBaseException):
    """Raised when supporting documents are changed on a signed or terminated agreement."""
    def __init__(self, agreement_id: int, current_status: str):
        msg = f"Supporting documents cannot be changed once an agreement is {current_status}"
        super().__init__(msg, {"agreement_id": agreement_id, "current_status": current_status})


class DeliveryError(AgreementBaseException):
    """Raised when a notification email failed after the state change was committed."""
    def __init__(self, message: str, agreement_id: int, agreement_status: str):
        super().__init__(
            message,
            {"agreement_id": agreement_id, "status": agreement_status, "state_committed": True},
        )


class DocumentStorageError(AgreementBaseException):
    """Raised when a supporting document could not be written to storage."""


def convert_to_http_exception(exc: AgreementBaseException) -> HTTPException:
    """
    Convert an AgreementBaseException to an HTTPException with appropriate status code.

    Args:
        exc: The agreement exception to convert

    Returns:
        HTTPException with appropriate status code and detail
    """
    if isinstance(exc, NotFoundError):
        status_code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (ValidationError, IntegrityError)):
        status_code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, (StateConflictError, ImmutableStateError)):
        status_code = status.HTTP_409_CONFLICT
    elif isinstance(exc, InvalidTokenError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"message": exc.message, "details": {}},
        )
    elif isinstance(exc, (DeliveryError, DocumentStorageError)):
        status_code = status.HTTP_502_BAD_GATEWAY
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    return HTTPException(
        status_code=status_code,
        detail={"message": exc.message, "details": exc.details},
    )
