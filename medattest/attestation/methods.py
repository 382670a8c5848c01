"""
Attestation methods - the three mutually exclusive verification strategies.

Every strategy ends in ``verify`` returning a MethodProof. The session
decides what to do with the proof; a strategy never builds records itself.
"""
import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional, Any

from ..challenges.delivery import mask_destination
from ..challenges.exceptions import ChallengeNotFound
from ..challenges.gateway import OtpGateway
from ..challenges.schemas import IssuedChallenge
from ..config import settings
from ..core.security import generate_approval_code
from ..directory.schemas import PhysicianContactProfile
from .companion import ApprovalState, ApprovalStatus, CompanionBackend
from .exceptions import ApprovalDenied, ChannelUnavailable
from .schemas import AttestationContext, AttestationMethod, ConfidenceLevel, METHOD_CONFIDENCE, MethodProof

# Set up logging
logger = logging.getLogger(__name__)

def method_availability(profile: PhysicianContactProfile) -> Dict[AttestationMethod, Optional[str]]:
    """
    Work out which methods can be selected for a contact profile.

    Args:
        profile: Resolved (possibly degraded) contact profile

    Returns:
        Dict mapping each method to None when available, or to the reason it is not
    """
    return {
        AttestationMethod.APP_APPROVAL: None,
        AttestationMethod.EMAIL_OTP: None if profile.has_email else "No verified email address on file",
        AttestationMethod.MANUAL_APPROVAL: None,
    }

class AttestationStrategy:
    """
    Base class for verification strategies.
    """
    method: AttestationMethod

    def __init__(self, profile: PhysicianContactProfile, context: AttestationContext):
        self.profile = profile
        self.context = context

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return METHOD_CONFIDENCE[self.method]

    async def verify(self, **inputs) -> MethodProof:
        raise NotImplementedError

    async def cancel(self) -> None:
        """Release whatever the strategy holds remotely. Default: nothing."""

    def describe(self) -> Dict[str, Any]:
        """Step data shown to the user while authenticating."""
        return {}

class AppApproval(AttestationStrategy):
    """
    Confirmation of the request in the physician's companion app.

    ``start`` creates the remote request; ``verify`` suspends until the
    physician decides; ``poll`` checks without waiting.
    """
    method = AttestationMethod.APP_APPROVAL

    def __init__(
        self,
        profile: PhysicianContactProfile,
        context: AttestationContext,
        backend: CompanionBackend,
        timeout: Optional[float] = None
    ):
        super().__init__(profile, context)
        self.backend = backend
        self.timeout = timeout or settings.app_approval_timeout_seconds
        self.request: Optional[ApprovalState] = None

    async def start(self) -> ApprovalState:
        """
        Ask the companion backend for an approval, reusing a pending request.
        """
        if self.request is None or self.request.decided:
            self.request = await self.backend.create_request(self.profile.license_number, self.context)
        return self.request

    async def poll(self) -> Optional[MethodProof]:
        """
        Check the pending request once.

        Returns:
            MethodProof once approved, None while pending

        Raises:
            ApprovalDenied: If the physician denied the request
        """
        if self.request is None:
            await self.start()
            return None
        self.request = await self.backend.get_status(self.request.request_id)
        return self._proof_for(self.request)

    async def verify(self, **inputs) -> MethodProof:
        await self.start()
        self.request = await self.backend.wait_for_decision(self.request.request_id, self.timeout)
        return self._proof_for(self.request)

    def _proof_for(self, state: ApprovalState) -> Optional[MethodProof]:
        if state.status == ApprovalStatus.APPROVED:
            return MethodProof(method=self.method, value=state.token, reference=state.request_id)
        if state.status == ApprovalStatus.DENIED:
            raise ApprovalDenied()
        if state.status == ApprovalStatus.CANCELLED:
            raise ApprovalDenied("The approval request was withdrawn, start a new one")
        return None

    async def cancel(self) -> None:
        if self.request is not None and not self.request.decided:
            await self.backend.cancel(self.request.request_id)
        self.request = None

    def describe(self) -> Dict[str, Any]:
        if self.request is None:
            return {"status": "not_started"}
        return {"status": self.request.status.value, "request_id": self.request.request_id}

class EmailOTP(AttestationStrategy):
    """
    One-time code sent to the physician's email, two phases:
    ``request_code`` then ``submit_code``.
    """
    method = AttestationMethod.EMAIL_OTP

    def __init__(
        self,
        profile: PhysicianContactProfile,
        context: AttestationContext,
        gateway: OtpGateway
    ):
        if not profile.has_email:
            raise ChannelUnavailable("Email code is unavailable: no verified email address on file")
        super().__init__(profile, context)
        self.gateway = gateway
        self.challenge: Optional[IssuedChallenge] = None

    async def request_code(self) -> Dict[str, Any]:
        """
        Issue a code and email it.

        Returns:
            Dict with ``status: "sent"``, the expiry and a masked destination
        """
        self.challenge = await self.gateway.send(self.profile.license_number, self.profile.email)
        return self.describe()

    async def resend(self) -> Dict[str, Any]:
        """
        Discard the current code and issue a new one.
        """
        if self.challenge is not None:
            await self.gateway.cancel(self.profile.license_number)
            self.challenge = None
        return await self.request_code()

    async def submit_code(self, code: str) -> MethodProof:
        """
        Validate a typed code.

        Raises:
            ChallengeNotFound: If no code was requested yet
        """
        if self.challenge is None:
            raise ChallengeNotFound("Request a verification code first")
        proof = await self.gateway.validate(self.challenge, self.profile.email, code)
        self.challenge = None
        return MethodProof(method=self.method, value=proof.code, reference=proof.challenge_id)

    async def verify(self, code: str = None, **inputs) -> MethodProof:
        return await self.submit_code(code)

    async def cancel(self) -> None:
        if self.challenge is not None:
            await self.gateway.cancel(self.profile.license_number)
            self.challenge = None

    def describe(self) -> Dict[str, Any]:
        if self.challenge is None:
            return {"status": "idle", "destination_hint": mask_destination(self.profile.email)}
        return {
            "status": "sent",
            "expires_at": self.challenge.expires_at.isoformat(),
            "destination_hint": self.challenge.destination_hint,
        }

class ManualApproval(AttestationStrategy):
    """
    Physically witnessed approval. No remote round-trip, lowest assurance.
    """
    method = AttestationMethod.MANUAL_APPROVAL

    # Most recently issued codes, oldest first
    _issued_codes: "OrderedDict[str, None]" = OrderedDict()
    _issued_lock = threading.Lock()
    max_tracked_codes = 10_000

    async def verify(self, **inputs) -> MethodProof:
        code = self._unique_code()
        logger.info(f"Manual approval registered for license {self.profile.license_number}")
        return MethodProof(method=self.method, value=code)

    @classmethod
    def _unique_code(cls) -> str:
        with cls._issued_lock:
            code = generate_approval_code()
            while code in cls._issued_codes:
                code = generate_approval_code()
            cls._issued_codes[code] = None
            while len(cls._issued_codes) > cls.max_tracked_codes:
                cls._issued_codes.popitem(last=False)
        return code

class MethodRegistry:
    """
    Builds strategy instances with their collaborators.
    """

    def __init__(
        self,
        otp_gateway: OtpGateway,
        companion: CompanionBackend,
        approval_timeout: Optional[float] = None
    ):
        self.otp_gateway = otp_gateway
        self.companion = companion
        self.approval_timeout = approval_timeout

    def create(
        self,
        method: AttestationMethod,
        profile: PhysicianContactProfile,
        context: AttestationContext
    ) -> AttestationStrategy:
        if method == AttestationMethod.APP_APPROVAL:
            return AppApproval(profile, context, self.companion, timeout=self.approval_timeout)
        if method == AttestationMethod.EMAIL_OTP:
            return EmailOTP(profile, context, self.otp_gateway)
        if method == AttestationMethod.MANUAL_APPROVAL:
            return ManualApproval(profile, context)
        raise ChannelUnavailable(f"Unknown attestation method {method}")
