"""
Physician Model - Stores the contact channels used to verify a physician.

The license number (CRM) is the physician's primary key in the attestation
protocol; email and phone are the out-of-band channels challenges go to.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, func
from datetime import datetime, timezone
from ..database import Base

class Physician(Base):
    """
    Physician Model - Stores physician directory entries

    Fields:
    - id: Primary key
    - license_number: Professional registration number (unique)
    - full_name: Physician's full name
    - email: Verified email address (optional)
    - phone: Verified phone number (optional)
    - specialization: Medical specialization (optional)
    - is_active: Whether the physician may currently attest requests
    - created_at: When the entry was created
    - updated_at: When the entry was last updated
    """
    __tablename__ = "physicians"

    id = Column(Integer, primary_key=True, index=True)
    license_number = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    specialization = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        """String representation of the Physician model"""
        return f"<Physician(id={self.id}, license_number='{self.license_number}', full_name='{self.full_name}')>"

    def update_contacts(self, email: str = None, phone: str = None) -> None:
        """
        Replace the physician's contact channels

        Args:
            email: New email address
            phone: New phone number
        """
        self.email = email
        self.phone = phone
        self.updated_at = datetime.now(timezone.utc)
