"""
Physician directory exceptions.
"""
from fastapi import status

from ..exceptions import AppException

class DirectoryLookupFailed(AppException):
    """
    Raised when a license number cannot be resolved to contact channels.

    Non-fatal for attestation: the directory adapters catch it and return a
    degraded profile instead.
    """
    code = "DIRECTORY_LOOKUP_FAILED"
    retryable = True

    def __init__(self, license_number: str, detail: str = None):
        self.license_number = license_number
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"Physician with license '{license_number}' could not be resolved"
        )
