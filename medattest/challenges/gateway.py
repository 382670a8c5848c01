"""
OTP gateways - the interface the email code method talks to.

``LocalOtpGateway`` drives the issuer and validator in process.
``HttpOtpGateway`` speaks the OTP service wire contract:

- ``POST otp/send``     ``{license, email}``        -> ``{expiresAt, challengeId}``
- ``POST otp/validate`` ``{license, email, code}``  -> ``{ok}`` or ``{ok: false, reason}``
- ``POST otp/cancel``   ``{license}``
"""
import logging
from typing import Optional

import httpx

from ..core.security import normalize_code, utcnow
from ..exceptions import NetworkError
from .delivery import mask_destination
from .exceptions import REASON_EXCEPTIONS
from .issuer import ChallengeIssuer
from .models import ChallengeChannel, ConsumedReason
from .schemas import IssuedChallenge, ChallengeProof
from .validator import ChallengeValidator

# Set up logging
logger = logging.getLogger(__name__)

class OtpGateway:
    """Contract shared by the local and remote OTP gateways."""

    async def send(self, license_number: str, email: str) -> IssuedChallenge:
        raise NotImplementedError

    async def validate(self, challenge: IssuedChallenge, email: str, code: str) -> ChallengeProof:
        raise NotImplementedError

    async def cancel(self, license_number: str) -> None:
        raise NotImplementedError

class LocalOtpGateway(OtpGateway):
    """In-process gateway over a ChallengeIssuer / ChallengeValidator pair."""

    def __init__(self, issuer: ChallengeIssuer, validator: ChallengeValidator):
        self.issuer = issuer
        self.validator = validator

    async def send(self, license_number: str, email: str) -> IssuedChallenge:
        return await self.issuer.issue(license_number, ChallengeChannel.EMAIL, email)

    async def validate(self, challenge: IssuedChallenge, email: str, code: str) -> ChallengeProof:
        return await self.validator.validate(challenge.challenge_id, code)

    async def cancel(self, license_number: str) -> None:
        await self.issuer.invalidate(license_number, ConsumedReason.CANCELLED)

class HttpOtpGateway(OtpGateway):
    """Gateway to a remote OTP service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport
            ) as client:
                return await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            raise NetworkError(f"OTP service timed out: {str(e)}")
        except httpx.HTTPError as e:
            raise NetworkError(f"OTP service unreachable: {str(e)}")

    @staticmethod
    def _raise_for_reason(response: httpx.Response) -> None:
        try:
            body = response.json()
        except ValueError:
            body = {}
        reason = body.get("reason")
        exc_class = REASON_EXCEPTIONS.get(reason)
        if exc_class is not None:
            detail = body.get("detail")
            raise exc_class(detail) if detail else exc_class()
        raise NetworkError(f"OTP service returned HTTP {response.status_code}")

    async def send(self, license_number: str, email: str) -> IssuedChallenge:
        response = await self._post("/otp/send", {"license": license_number, "email": email})
        if response.status_code >= 400:
            self._raise_for_reason(response)
        try:
            body = response.json()
            return IssuedChallenge(
                challenge_id=body["challengeId"],
                license_number=license_number,
                channel=ChallengeChannel.EMAIL,
                destination_hint=mask_destination(email),
                issued_at=utcnow(),
                expires_at=body["expiresAt"]
            )
        except (ValueError, KeyError) as e:
            raise NetworkError(f"OTP service returned a malformed response: {str(e)}")

    async def validate(self, challenge: IssuedChallenge, email: str, code: str) -> ChallengeProof:
        response = await self._post(
            "/otp/validate",
            {"license": challenge.license_number, "email": email, "code": code}
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400 or not body.get("ok"):
            self._raise_for_reason(response)
        return ChallengeProof(
            challenge_id=challenge.challenge_id,
            license_number=challenge.license_number,
            code=normalize_code(code),
            validated_at=utcnow()
        )

    async def cancel(self, license_number: str) -> None:
        try:
            response = await self._post("/otp/cancel", {"license": license_number})
        except NetworkError as e:
            # The challenge still expires on its own; a failed cancel is not fatal
            logger.warning(f"Could not cancel challenge for license {license_number}: {e.detail}")
            return
        if response.status_code >= 400:
            logger.warning(f"OTP service refused cancel for license {license_number}: HTTP {response.status_code}")

