"""
Challenge issuance.

Issuing is a read-modify-write on the set of live challenges of a license:
older unconsumed challenges are superseded and the new one inserted in the
same transaction, under a per-license lock. The partial unique index on
``challenges`` backs the same rule across processes.
"""
import asyncio
import logging
import threading
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..core.audit_service import create_audit_log
from ..core.security import generate_challenge_code, hash_code, utcnow
from ..exceptions import NetworkError
from .delivery import CodeDelivery, CodeMessage, mask_destination
from .exceptions import ChallengeIssueConflict
from .models import Challenge, ChallengeChannel, ConsumedReason
from .schemas import IssuedChallenge

# Set up logging
logger = logging.getLogger(__name__)

class ChallengeIssuer:
    """
    Creates one-time challenges and dispatches their codes.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        delivery: CodeDelivery,
        ttl_minutes: Optional[int] = None,
        delivery_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
        code_generator: Callable[[], str] = generate_challenge_code
    ):
        self._session_factory = session_factory
        self._delivery = delivery
        self.ttl = timedelta(minutes=ttl_minutes or settings.otp_ttl_minutes)
        self._delivery_timeout = delivery_timeout or settings.request_timeout_seconds
        self._clock = clock
        self._code_generator = code_generator
        self._locks = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    def _license_lock(self, license_number: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks[license_number]

    async def issue(
        self,
        license_number: str,
        channel: ChallengeChannel,
        destination: str
    ) -> IssuedChallenge:
        """
        Issue a new challenge and send its code out-of-band.

        Any unconsumed challenge of the license is superseded first, so a
        resend never leaves two valid codes around.

        Args:
            license_number: Physician license number
            channel: Delivery channel
            destination: Email address or phone number

        Returns:
            IssuedChallenge: Handle without the code

        Raises:
            ChallengeIssueConflict: If a concurrent issuance from another process won
            NetworkError: If the code could not be delivered
        """
        code = self._code_generator()
        now = self._clock()

        with self._license_lock(license_number):
            with self._session_factory() as db:
                superseded = Challenge.consume_live_for_license(
                    db, license_number, ConsumedReason.SUPERSEDED, now
                )
                challenge = Challenge(
                    license_number=license_number,
                    channel=channel,
                    destination=destination,
                    code_hash=hash_code(code),
                    issued_at=now,
                    expires_at=now + self.ttl,
                    attempts=0,
                    consumed=False
                )
                db.add(challenge)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    logger.warning(f"Concurrent challenge issuance detected for license {license_number}")
                    raise ChallengeIssueConflict()
                db.refresh(challenge)
                handle = IssuedChallenge(
                    challenge_id=challenge.id,
                    license_number=license_number,
                    channel=channel,
                    destination_hint=mask_destination(destination),
                    issued_at=now,
                    expires_at=now + self.ttl
                )

        if superseded:
            logger.info(f"Superseded {superseded} live challenge(s) for license {license_number}")

        message = CodeMessage(
            channel=channel,
            destination=destination,
            license_number=license_number,
            code=code,
            expires_at=handle.expires_at
        )
        try:
            await asyncio.wait_for(self._delivery.send(message), timeout=self._delivery_timeout)
        except (NetworkError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to deliver challenge {handle.challenge_id} for license {license_number}: {str(e)}")
            self._burn(handle.challenge_id, ConsumedReason.DELIVERY_FAILED)
            await self._audit("OTP_DELIVERY_FAILED", license_number, {
                "challenge_id": handle.challenge_id,
                "channel": channel.value,
                "error": str(e) or type(e).__name__
            })
            if isinstance(e, NetworkError):
                raise
            raise NetworkError("Timed out while sending the verification code")

        logger.info(f"Challenge {handle.challenge_id} issued for license {license_number} via {channel.value}")
        await self._audit("OTP_ISSUED", license_number, {
            "challenge_id": handle.challenge_id,
            "channel": channel.value,
            "destination": handle.destination_hint,
            "superseded": superseded,
            "expires_at": handle.expires_at.isoformat()
        })
        return handle

    async def invalidate(
        self,
        license_number: str,
        reason: ConsumedReason = ConsumedReason.CANCELLED
    ) -> int:
        """
        Consume the live challenge of a license without validating it.

        Args:
            license_number: Physician license number
            reason: Why the challenge is dropped

        Returns:
            int: Number of challenges invalidated
        """
        with self._license_lock(license_number):
            with self._session_factory() as db:
                count = Challenge.consume_live_for_license(db, license_number, reason, self._clock())
                db.commit()

        if count:
            logger.info(f"Invalidated {count} live challenge(s) for license {license_number} ({reason.value})")
            await self._audit("OTP_INVALIDATED", license_number, {"count": count, "reason": reason.value})
        return count

    def _burn(self, challenge_id: str, reason: ConsumedReason) -> None:
        with self._session_factory() as db:
            Challenge.consume(db, challenge_id, reason, self._clock())
            db.commit()

    async def _audit(self, action: str, license_number: str, details: dict) -> None:
        with self._session_factory() as db:
            await create_audit_log(db, action=action, actor=license_number, details=details)
