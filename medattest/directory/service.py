"""
Physician Directory Service - Resolves license numbers to verifiable contact channels.

Two adapters share one contract: ``resolve`` is best-effort and never raises.
A failed lookup yields a degraded profile carrying only the caller's license
number and name, which in turn disables the methods that need a channel.
"""
from typing import Callable, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
import logging

import httpx
from pydantic import ValidationError

from ..core.security import utcnow
from ..exceptions import AppException, NetworkError
from .exceptions import DirectoryLookupFailed
from .models import Physician
from .schemas import PhysicianIdentity, PhysicianContactProfile, DirectoryEntryResponse, PhysicianUpsert

# Set up logging
logger = logging.getLogger(__name__)

class PhysicianDirectory:
    """
    Base class for directory adapters.

    Subclasses implement ``lookup``; ``resolve`` wraps it with the
    degrade-on-failure policy.
    """

    async def lookup(self, license_number: str) -> DirectoryEntryResponse:
        raise NotImplementedError

    async def resolve(self, identity: PhysicianIdentity) -> PhysicianContactProfile:
        """
        Resolve a physician's contact channels.

        Args:
            identity: Caller-supplied physician identity

        Returns:
            PhysicianContactProfile: Full profile, or a degraded one on failure
        """
        try:
            entry = await self.lookup(identity.license_number)
        except (AppException, SQLAlchemyError) as e:
            logger.warning(f"Directory lookup failed for license {identity.license_number}: {str(e)}")
            return PhysicianContactProfile(
                license_number=identity.license_number,
                display_name=identity.display_name,
                resolved_at=utcnow(),
                lookup_failed=True
            )

        return PhysicianContactProfile(
            license_number=identity.license_number,
            display_name=entry.name or identity.display_name,
            email=entry.email or None,
            phone=entry.phone or None,
            resolved_at=utcnow()
        )

class DatabasePhysicianDirectory(PhysicianDirectory):
    """Directory backed by the local ``physicians`` table."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def lookup(self, license_number: str) -> DirectoryEntryResponse:
        with self._session_factory() as db:
            return get_directory_entry(db, license_number)

class HttpPhysicianDirectory(PhysicianDirectory):
    """
    Directory backed by a remote service.

    Speaks ``GET physician-directory?license=<id>`` returning
    ``{license, name, email?, phone?}``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def lookup(self, license_number: str) -> DirectoryEntryResponse:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport
            ) as client:
                response = await client.get("/physician-directory", params={"license": license_number})
        except httpx.TimeoutException as e:
            raise NetworkError(f"Physician directory timed out: {str(e)}")
        except httpx.HTTPError as e:
            raise NetworkError(f"Physician directory unreachable: {str(e)}")

        if response.status_code == 404:
            raise DirectoryLookupFailed(license_number)
        if response.status_code >= 400:
            raise NetworkError(f"Physician directory returned HTTP {response.status_code}")

        try:
            return DirectoryEntryResponse(**response.json())
        except (ValueError, TypeError, ValidationError):
            raise DirectoryLookupFailed(license_number, "Physician directory returned a malformed entry")

def get_directory_entry(db: Session, license_number: str) -> DirectoryEntryResponse:
    """
    Get the directory entry for a license number.

    Args:
        db: Database session
        license_number: Professional registration number

    Returns:
        DirectoryEntryResponse: Contact data for the physician

    Raises:
        DirectoryLookupFailed: If no active physician holds the license
    """
    physician = db.query(Physician).filter(Physician.license_number == license_number).first()
    if not physician or not physician.is_active:
        raise DirectoryLookupFailed(license_number)
    return DirectoryEntryResponse(
        license=physician.license_number,
        name=physician.full_name,
        email=physician.email,
        phone=physician.phone
    )

def upsert_physician(db: Session, data: PhysicianUpsert) -> Physician:
    """
    Create a directory entry or update the existing one for the license.

    Args:
        db: Database session
        data: Physician data

    Returns:
        Physician: The stored entry
    """
    physician = db.query(Physician).filter(Physician.license_number == data.license_number).first()
    if physician:
        physician.full_name = data.full_name
        physician.specialization = data.specialization
        physician.update_contacts(email=data.email, phone=data.phone)
    else:
        physician = Physician(
            license_number=data.license_number,
            full_name=data.full_name,
            email=data.email,
            phone=data.phone,
            specialization=data.specialization
        )
        db.add(physician)

    try:
        db.commit()
        db.refresh(physician)
        logger.info(f"Directory entry stored for license {physician.license_number}")
        return physician
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error storing directory entry for license {data.license_number}: {str(e)}")
        raise

def get_physician_directory(session_factory: Callable[[], Session], settings) -> PhysicianDirectory:
    """
    Pick the directory adapter for the current configuration.

    Args:
        session_factory: Factory for database sessions
        settings: Application settings

    Returns:
        PhysicianDirectory: Remote adapter when a URL is configured, database adapter otherwise
    """
    if settings.physician_directory_url:
        return HttpPhysicianDirectory(settings.physician_directory_url, timeout=settings.request_timeout_seconds)
    return DatabasePhysicianDirectory(session_factory)
