"""
Challenge Model - Stores one-time verification codes issued to physicians.

Only a salted hash of the code is stored. A partial unique index keeps at
most one unconsumed challenge per license number at the database level.
"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum, Index, false
from sqlalchemy.orm import Session
from datetime import datetime
import enum
import uuid

from ..database import Base

class ChallengeChannel(str, enum.Enum):
    """
    Out-of-band channels a code can be delivered through.

    Channels:
    - EMAIL: Code sent to the physician's email address
    - SMS: Code sent to the physician's phone
    """
    EMAIL = "EMAIL"
    SMS = "SMS"

class ConsumedReason(str, enum.Enum):
    """
    Why a challenge stopped being live.

    Reasons:
    - VALIDATED: The correct code was submitted
    - SUPERSEDED: A newer challenge was issued for the same license
    - CANCELLED: The attestation flow was abandoned or navigated away from
    - ATTEMPTS_EXHAUSTED: Too many wrong codes were submitted
    - DELIVERY_FAILED: The code could not be sent
    """
    VALIDATED = "VALIDATED"
    SUPERSEDED = "SUPERSEDED"
    CANCELLED = "CANCELLED"
    ATTEMPTS_EXHAUSTED = "ATTEMPTS_EXHAUSTED"
    DELIVERY_FAILED = "DELIVERY_FAILED"

def _new_challenge_id() -> str:
    return str(uuid.uuid4())

class Challenge(Base):
    """
    Challenge Model - One-time code issued to a physician

    Fields:
    - id: Opaque challenge identifier (UUID)
    - license_number: License of the physician the code was issued to
    - channel: Delivery channel
    - destination: Address or number the code was sent to
    - code_hash: Salted hash of the code
    - issued_at: When the challenge was issued
    - expires_at: After this instant the challenge is rejected
    - attempts: Number of wrong codes submitted so far
    - consumed: Whether the challenge can no longer be validated
    - consumed_at: When the challenge was consumed
    - consumed_reason: Why the challenge was consumed
    """
    __tablename__ = "challenges"

    id = Column(String(36), primary_key=True, default=_new_challenge_id)
    license_number = Column(String, nullable=False, index=True)
    channel = Column(Enum(ChallengeChannel), nullable=False, default=ChallengeChannel.EMAIL)
    destination = Column(String, nullable=False)
    code_hash = Column(String, nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    consumed = Column(Boolean, nullable=False, default=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    consumed_reason = Column(Enum(ConsumedReason), nullable=True)

    __table_args__ = (
        Index(
            "uq_challenges_live_license",
            "license_number",
            unique=True,
            sqlite_where=consumed == false(),
            postgresql_where=consumed == false(),
        ),
    )

    def __repr__(self):
        """String representation of the Challenge model"""
        return (
            f"<Challenge(id={self.id}, license_number='{self.license_number}', "
            f"consumed={self.consumed}, expires_at='{self.expires_at}')>"
        )

    @staticmethod
    def consume(db: Session, challenge_id: str, reason: ConsumedReason, now: datetime) -> bool:
        """
        Atomically mark a live challenge as consumed.

        This is a compare-and-set on ``consumed``: of two concurrent callers
        only one sees an updated row.

        Args:
            db: Database session (caller commits)
            challenge_id: Challenge to consume
            reason: Why it is consumed
            now: Consumption time

        Returns:
            bool: True if this call consumed the challenge
        """
        updated = (
            db.query(Challenge)
            .filter(Challenge.id == challenge_id, Challenge.consumed == false())
            .update(
                {"consumed": True, "consumed_at": now, "consumed_reason": reason},
                synchronize_session=False
            )
        )
        return updated == 1

    @staticmethod
    def consume_live_for_license(db: Session, license_number: str, reason: ConsumedReason, now: datetime) -> int:
        """
        Consume every unconsumed challenge of a license.

        Args:
            db: Database session (caller commits)
            license_number: License whose challenges are consumed
            reason: Why they are consumed
            now: Consumption time

        Returns:
            int: Number of challenges consumed
        """
        return (
            db.query(Challenge)
            .filter(Challenge.license_number == license_number, Challenge.consumed == false())
            .update(
                {"consumed": True, "consumed_at": now, "consumed_reason": reason},
                synchronize_session=False
            )
        )
