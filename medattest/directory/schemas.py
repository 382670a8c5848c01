"""
Physician Directory Schemas - Pydantic models for physician identity and contact data.
"""
from typing import Optional
from pydantic import BaseModel, Field, EmailStr, validator
from datetime import datetime

class PhysicianIdentity(BaseModel):
    """
    Physician Identity - Supplied by the caller, immutable for a session

    Fields:
    - license_number: Professional registration number (CRM)
    - display_name: Name shown on the attestation
    """
    license_number: str = Field(..., min_length=1, description="Professional registration number (CRM)")
    display_name: str = Field(..., min_length=1, description="Physician name as shown to the user")

    @validator("license_number")
    def strip_license(cls, value):
        value = value.strip()
        if not value:
            raise ValueError("License number must not be blank")
        return value

    class Config:
        frozen = True

class PhysicianContactProfile(BaseModel):
    """
    Physician Contact Profile - Result of a directory lookup

    Any contact field may be missing when the lookup failed or the directory
    has no verified channel on file; method availability is derived from it.

    Fields:
    - license_number: Professional registration number
    - display_name: Name from the directory, or the caller's name on failure
    - email: Verified email address (optional)
    - phone: Verified phone number (optional)
    - resolved_at: When the lookup completed
    - lookup_failed: True when the profile was degraded to caller input
    """
    license_number: str
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    resolved_at: datetime
    lookup_failed: bool = False

    @property
    def has_email(self) -> bool:
        return bool(self.email)

    class Config:
        frozen = True

class DirectoryEntryResponse(BaseModel):
    """Wire shape of ``GET physician-directory?license=<id>``"""
    license: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None

class PhysicianUpsert(BaseModel):
    """
    Physician Upsert Schema - Used to register or update a directory entry

    Fields:
    - license_number: Professional registration number
    - full_name: Physician's full name
    - email: Email address (optional)
    - phone: Phone number (optional)
    - specialization: Medical specialization (optional)
    """
    license_number: str = Field(..., min_length=1)
    full_name: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
