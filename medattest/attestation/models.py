"""
Attestation Record Model - Stores completed physician attestations.

Rows are written once, when a gate releases, and never updated.
"""
from sqlalchemy import Column, String, DateTime, Enum, Text, func

from ..core.security import as_utc
from ..database import Base
from .schemas import AttestationMethod, AttestationRecord, ConfidenceLevel

class AttestationRecordEntry(Base):
    """
    Attestation Record Entry - Persisted attestation evidence

    Fields:
    - id: Record identifier (uuid, same as AttestationRecord.record_id)
    - document_id: Authorized document
    - method: Method used
    - timestamp: When the attestation succeeded
    - license_number: Physician license number
    - physician_name: Physician name
    - proof: Method-specific proof
    - confidence_level: Assurance of the method
    - client_ip: Client address (audit hint only)
    - user_agent: Client user agent (audit hint only)
    - created_at: When the row was written
    """
    __tablename__ = "attestation_records"

    id = Column(String(36), primary_key=True)
    document_id = Column(String, index=True, nullable=False)
    method = Column(Enum(AttestationMethod), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    license_number = Column(String, index=True, nullable=False)
    physician_name = Column(String, nullable=False)
    proof = Column(Text, nullable=False)
    confidence_level = Column(Enum(ConfidenceLevel), nullable=False)
    client_ip = Column(String, nullable=False)
    user_agent = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @classmethod
    def from_record(cls, record: AttestationRecord) -> "AttestationRecordEntry":
        return cls(
            id=record.record_id,
            document_id=record.document_id,
            method=record.method,
            timestamp=record.timestamp,
            license_number=record.license_number,
            physician_name=record.physician_name,
            proof=record.proof,
            confidence_level=record.confidence_level,
            client_ip=record.client_ip,
            user_agent=record.user_agent
        )

    def to_record(self) -> AttestationRecord:
        return AttestationRecord(
            record_id=self.id,
            document_id=self.document_id,
            method=self.method,
            timestamp=as_utc(self.timestamp),
            license_number=self.license_number,
            physician_name=self.physician_name,
            proof=self.proof,
            confidence_level=self.confidence_level,
            client_ip=self.client_ip,
            user_agent=self.user_agent
        )

    def __repr__(self):
        return f"<AttestationRecordEntry(id={self.id}, document_id={self.document_id}, method={self.method})>"
