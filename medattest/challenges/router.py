"""
OTP routes - the wire contract of the one-time code service.

Validation failures answer ``{"ok": false, "reason": ...}`` with the status
code of the underlying error, so remote gateways can rebuild the exception.
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
import logging

from ..runtime import Runtime, get_runtime
from ..directory.schemas import PhysicianIdentity
from .exceptions import ChallengeError, ChannelNotVerified
from .models import ChallengeChannel, ConsumedReason
from .schemas import (
    OtpSendRequest, OtpSendResponse,
    OtpValidateRequest, OtpValidateResponse,
    OtpCancelRequest
)

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter()

def _challenge_error_response(exc: ChallengeError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "reason": exc.code, "detail": exc.detail}
    )

@router.post("/send", response_model=OtpSendResponse, response_model_by_alias=True)
async def send_code(
    data: OtpSendRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Issue a one-time code for a physician and email it

    The email must be the one the directory lists for the license. Any
    earlier unconsumed code of the license stops being valid.
    """
    license_number = data.license.strip()
    profile = await runtime.directory.resolve(
        PhysicianIdentity(license_number=license_number, display_name=license_number)
    )
    if not profile.email or profile.email.lower() != data.email.strip().lower():
        logger.warning(f"OTP send refused for license {license_number}: destination not on file")
        return _challenge_error_response(ChannelNotVerified())

    try:
        handle = await runtime.issuer.issue(license_number, ChallengeChannel.EMAIL, profile.email)
    except ChallengeError as e:
        return _challenge_error_response(e)
    return OtpSendResponse(expires_at=handle.expires_at, challenge_id=handle.challenge_id)

@router.post("/validate", response_model=OtpValidateResponse)
async def validate_code(
    data: OtpValidateRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Validate a code against the most recent challenge of a license
    """
    try:
        await runtime.validator.validate_for_license(data.license.strip(), data.code)
    except ChallengeError as e:
        return _challenge_error_response(e)
    return OtpValidateResponse(ok=True)

@router.post("/cancel", status_code=status.HTTP_200_OK)
async def cancel_code(
    data: OtpCancelRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Invalidate the live code of a license, if any
    """
    count = await runtime.issuer.invalidate(data.license.strip(), ConsumedReason.CANCELLED)
    return {"ok": True, "invalidated": count}
