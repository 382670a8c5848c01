"""
Physician Directory Router - Lookup and registration of physician contact channels.
"""
from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..core.audit_service import create_audit_log
from .schemas import DirectoryEntryResponse, PhysicianUpsert
from .service import get_directory_entry, upsert_physician

router = APIRouter()

@router.get("", response_model=DirectoryEntryResponse)
async def lookup_physician(
    license: str = Query(..., min_length=1, description="Physician license number (CRM)"),
    db: Session = Depends(get_db)
):
    """
    Resolve a license number to the physician's contact channels

    Returns 404 when no active physician holds the license.
    """
    return get_directory_entry(db, license.strip())

@router.put("", response_model=DirectoryEntryResponse, status_code=status.HTTP_200_OK)
async def register_physician(
    data: PhysicianUpsert,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Register a physician or replace the contact channels on file
    """
    physician = upsert_physician(db, data)
    await create_audit_log(
        db,
        action="PHYSICIAN_DIRECTORY_ENTRY_STORED",
        actor=physician.license_number,
        request=request,
        details={"has_email": bool(physician.email), "has_phone": bool(physician.phone)}
    )
    return DirectoryEntryResponse(
        license=physician.license_number,
        name=physician.full_name,
        email=physician.email,
        phone=physician.phone
    )
