"""
Challenge validation.

Checks run in a fixed order: existence, single use, expiry, then the code
itself. The success path consumes the challenge with a compare-and-set, so
a double submit of the right code yields exactly one proof.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import false
from sqlalchemy.orm import Session

from ..config import settings
from ..core.audit_service import create_audit_log
from ..core.security import CODE_LENGTH, is_expired, normalize_code, utcnow, verify_code_hash
from .exceptions import (
    ChallengeNotFound,
    ChallengeAlreadyUsed,
    ChallengeExpired,
    ChallengeMismatch,
    ChallengeAttemptsExceeded
)
from .models import Challenge, ConsumedReason
from .schemas import ChallengeProof

# Set up logging
logger = logging.getLogger(__name__)

class ChallengeValidator:
    """
    Validates submitted codes against outstanding challenges.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_attempts: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._session_factory = session_factory
        self.max_attempts = max_attempts or settings.otp_max_attempts
        self._clock = clock

    async def validate(self, challenge_id: str, submitted_code: str) -> ChallengeProof:
        """
        Validate a code against a challenge.

        Args:
            challenge_id: Challenge to validate
            submitted_code: Code as typed; non-digits are stripped

        Returns:
            ChallengeProof: Proof carrying the validated code

        Raises:
            ChallengeNotFound: If the challenge does not exist
            ChallengeAlreadyUsed: If it was consumed, including by a concurrent validation
            ChallengeExpired: If it is past its expiry
            ChallengeMismatch: If the code is wrong
            ChallengeAttemptsExceeded: If this wrong code exhausted the challenge
        """
        code = normalize_code(submitted_code)
        now = self._clock()

        with self._session_factory() as db:
            challenge = db.get(Challenge, challenge_id)
            if challenge is None:
                logger.warning(f"Validation failed: challenge {challenge_id} not found")
                await create_audit_log(db, action="OTP_VALIDATION_FAILED_NOT_FOUND", details={"challenge_id": challenge_id})
                raise ChallengeNotFound()

            license_number = challenge.license_number

            if challenge.consumed:
                logger.warning(f"Validation failed: challenge {challenge_id} already consumed ({challenge.consumed_reason})")
                await create_audit_log(db, action="OTP_VALIDATION_FAILED_ALREADY_USED", actor=license_number, details={
                    "challenge_id": challenge_id,
                    "consumed_reason": challenge.consumed_reason.value if challenge.consumed_reason else None
                })
                raise ChallengeAlreadyUsed()

            if is_expired(challenge.expires_at, now):
                logger.warning(f"Validation failed: challenge {challenge_id} expired")
                await create_audit_log(db, action="OTP_VALIDATION_FAILED_EXPIRED", actor=license_number, details={"challenge_id": challenge_id})
                raise ChallengeExpired()

            if len(code) != CODE_LENGTH or not verify_code_hash(code, challenge.code_hash):
                try:
                    self._record_mismatch(db, challenge_id, now)
                except ChallengeMismatch as e:
                    await create_audit_log(db, action="OTP_VALIDATION_FAILED_MISMATCH", actor=license_number, details={
                        "challenge_id": challenge_id,
                        "attempts_remaining": e.attempts_remaining
                    })
                    raise

            if not Challenge.consume(db, challenge_id, ConsumedReason.VALIDATED, now):
                db.rollback()
                logger.warning(f"Validation lost a race: challenge {challenge_id} consumed concurrently")
                await create_audit_log(db, action="OTP_VALIDATION_FAILED_ALREADY_USED", actor=license_number, details={
                    "challenge_id": challenge_id,
                    "concurrent": True
                })
                raise ChallengeAlreadyUsed()
            db.commit()

            logger.info(f"Challenge {challenge_id} validated for license {license_number}")
            await create_audit_log(db, action="OTP_VALIDATION_SUCCESS", actor=license_number, details={"challenge_id": challenge_id})

        return ChallengeProof(
            challenge_id=challenge_id,
            license_number=license_number,
            code=code,
            validated_at=now
        )

    async def validate_for_license(self, license_number: str, submitted_code: str) -> ChallengeProof:
        """
        Validate a code against the current challenge of a license: the live
        one if any, otherwise the most recently issued.

        Args:
            license_number: Physician license number
            submitted_code: Code as typed

        Returns:
            ChallengeProof: Proof carrying the validated code

        Raises:
            ChallengeNotFound: If no challenge was ever issued to the license
        """
        with self._session_factory() as db:
            latest = (
                db.query(Challenge.id)
                .filter(Challenge.license_number == license_number)
                .order_by(Challenge.consumed.asc(), Challenge.issued_at.desc())
                .first()
            )
        if latest is None:
            raise ChallengeNotFound()
        return await self.validate(latest.id, submitted_code)

    def _record_mismatch(self, db: Session, challenge_id: str, now: datetime) -> None:
        db.query(Challenge).filter(
            Challenge.id == challenge_id, Challenge.consumed == false()
        ).update({"attempts": Challenge.attempts + 1}, synchronize_session=False)
        db.commit()

        challenge = db.get(Challenge, challenge_id, populate_existing=True)
        attempts = challenge.attempts
        license_number = challenge.license_number

        if attempts >= self.max_attempts:
            Challenge.consume(db, challenge_id, ConsumedReason.ATTEMPTS_EXHAUSTED, now)
            db.commit()
            logger.warning(f"Challenge {challenge_id} exhausted after {attempts} invalid attempts")
            raise ChallengeAttemptsExceeded()

        logger.warning(f"Validation failed: invalid code for challenge {challenge_id} (attempt {attempts})")
        raise ChallengeMismatch(attempts_remaining=self.max_attempts - attempts)
