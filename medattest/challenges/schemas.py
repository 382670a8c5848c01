"""
Challenge Schemas - Pydantic models for challenge handles, proofs and the OTP wire contract.
"""
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime

from .models import ChallengeChannel

class IssuedChallenge(BaseModel):
    """
    Handle returned to the caller after issuance. Never carries the code.

    Fields:
    - challenge_id: Opaque challenge identifier
    - license_number: License the challenge was issued to
    - channel: Delivery channel
    - destination_hint: Masked destination, safe to display
    - issued_at: Issue time
    - expires_at: Expiry time
    """
    challenge_id: str
    license_number: str
    channel: ChallengeChannel
    destination_hint: str
    issued_at: datetime
    expires_at: datetime

    class Config:
        frozen = True

class ChallengeProof(BaseModel):
    """
    Proof of a successful validation, retained for audit.

    Fields:
    - challenge_id: Validated challenge
    - license_number: License the challenge was issued to
    - code: The validated (normalized) code
    - validated_at: Validation time
    """
    challenge_id: str
    license_number: str
    code: str
    validated_at: datetime

    class Config:
        frozen = True

class OtpSendRequest(BaseModel):
    """Body of ``POST otp/send``"""
    license: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)

class OtpSendResponse(BaseModel):
    """Response of ``POST otp/send``"""
    expires_at: datetime = Field(..., alias="expiresAt")
    challenge_id: str = Field(..., alias="challengeId")

    class Config:
        populate_by_name = True

class OtpValidateRequest(BaseModel):
    """Body of ``POST otp/validate``"""
    license: str = Field(..., min_length=1)
    email: Optional[str] = None
    code: str = Field(..., description="Code as typed; non-digits are ignored")

class OtpValidateResponse(BaseModel):
    """Response of ``POST otp/validate``; ``reason`` is set when ``ok`` is false"""
    ok: bool
    reason: Optional[str] = None
    detail: Optional[str] = None

class OtpCancelRequest(BaseModel):
    """Body of ``POST otp/cancel``"""
    license: str = Field(..., min_length=1)
