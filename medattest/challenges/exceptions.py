"""
Challenge-specific exceptions.

Each class carries the ``code`` used as the ``reason`` field of the OTP wire
contract, so remote clients can rebuild the same exception.
"""
from typing import Optional
from fastapi import status

from ..exceptions import AppException

class ChallengeError(AppException):
    """Base class for challenge validation and issuance failures."""
    code = "CHALLENGE_ERROR"

    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)

class ChallengeNotFound(ChallengeError):
    """Raised when no challenge matches the given id or license."""
    code = "NOT_FOUND"

    def __init__(self, detail: str = "No verification code was issued for this request"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class ChallengeAlreadyUsed(ChallengeError):
    """Raised when a challenge was already consumed (validated, superseded or cancelled)."""
    code = "ALREADY_USED"

    def __init__(self, detail: str = "This verification code has already been used or replaced"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class ChallengeExpired(ChallengeError):
    """Raised when a challenge is past its expiry, whatever code was submitted."""
    code = "EXPIRED"
    retryable = True

    def __init__(self, detail: str = "Verification code has expired, request a new one"):
        super().__init__(status_code=status.HTTP_410_GONE, detail=detail)

class ChallengeMismatch(ChallengeError):
    """Raised when the submitted code does not match the challenge."""
    code = "MISMATCH"
    retryable = True

    def __init__(self, detail: str = "Invalid verification code", attempts_remaining: Optional[int] = None):
        self.attempts_remaining = attempts_remaining
        if attempts_remaining is not None:
            detail = f"{detail} ({attempts_remaining} attempts remaining)"
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class ChallengeAttemptsExceeded(ChallengeMismatch):
    """Raised on the mismatch that exhausts a challenge; a new code must be issued."""
    code = "ATTEMPTS_EXCEEDED"

    def __init__(self, detail: str = "Too many invalid attempts, request a new verification code"):
        super().__init__(detail=detail)
        self.attempts_remaining = 0

class ChallengeIssueConflict(ChallengeError):
    """Raised when another issuance for the same license won a concurrent race."""
    code = "ISSUE_CONFLICT"
    retryable = True

    def __init__(self, detail: str = "Another verification code is being issued, please retry"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class ChannelNotVerified(ChallengeError):
    """Raised when a code is requested for a destination the directory does not list for the license."""
    code = "CHANNEL_NOT_VERIFIED"

    def __init__(self, detail: str = "Destination is not a verified channel for this physician"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

REASON_EXCEPTIONS = {
    exc.code: exc
    for exc in (
        ChallengeNotFound,
        ChallengeAlreadyUsed,
        ChallengeExpired,
        ChallengeMismatch,
        ChallengeAttemptsExceeded,
        ChallengeIssueConflict,
        ChannelNotVerified,
    )
}
