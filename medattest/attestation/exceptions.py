"""
Attestation-specific exceptions.
"""
from fastapi import status

from ..exceptions import AppException

CANCEL_PROMPT = (
    "Physician authentication is mandatory for the legal validity of this request. "
    "Cancel anyway?"
)

class AttestationError(AppException):
    """Base class for attestation exceptions."""
    code = "ATTESTATION_ERROR"

    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

class ChannelUnavailable(AttestationError):
    """Raised when a method needs a contact channel the directory did not resolve."""
    code = "CHANNEL_UNAVAILABLE"

    def __init__(self, detail: str = "This verification method is not available for this physician"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class ApprovalDenied(AttestationError):
    """Raised when the physician rejects the request in the companion app."""
    code = "APPROVAL_DENIED"
    retryable = True

    def __init__(self, detail: str = "The physician denied the request in the companion app"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class InvalidTransition(AttestationError):
    """Raised when an event is not allowed in the current session or gate state."""
    code = "INVALID_TRANSITION"

    def __init__(self, detail: str = "This step is not allowed in the current state"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class AttestationRequired(AttestationError):
    """Raised when the protected action is requested before attestation succeeded."""
    code = "ATTESTATION_REQUIRED"

    def __init__(self, detail: str = "Physician attestation is required before this request can proceed"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class CancelConfirmationRequired(AttestationError):
    """Raised when abandonment is requested without the explicit confirmation step."""
    code = "CANCEL_CONFIRMATION_REQUIRED"

    def __init__(self, detail: str = CANCEL_PROMPT):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class UserCancelled(AttestationError):
    """Raised when the user confirmed abandoning the attestation."""
    code = "USER_CANCELLED"

    def __init__(self, detail: str = "Attestation was cancelled; the request has no legal validity"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class GateClosed(AttestationError):
    """Raised when a released or abandoned gate is used again."""
    code = "GATE_CLOSED"

    def __init__(self, detail: str = "This attestation has already been completed or abandoned"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class SessionNotFound(AttestationError):
    """Raised when no open session matches the given id."""
    code = "SESSION_NOT_FOUND"

    def __init__(self, detail: str = "Attestation session not found or expired"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class RecordNotFound(AttestationError):
    """Raised when no persisted attestation record matches the given id."""
    code = "RECORD_NOT_FOUND"

    def __init__(self, detail: str = "Attestation record not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class InvariantViolation(AssertionError):
    """
    Programming error: a record was read from a session that never succeeded.

    Outside the AppException hierarchy; never mapped to an HTTP response.
    """
