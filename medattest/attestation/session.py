"""
Attestation session - the state machine behind one document attestation.

States are immutable values and ``transition`` is a pure function of
(state, event). ``AttestationSession`` drives it: it resolves the physician's
channels, runs the selected method and assembles the record on success.

    MethodSelection --SelectMethod--> Authenticating(method)
    Authenticating  --NavigateBack--> MethodSelection
    Authenticating  --VerificationSucceeded--> Succeeded(record)    (terminal)
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..challenges.exceptions import ChallengeError
from ..core.client_context import ClientContext
from ..core.security import utcnow
from ..directory.exceptions import DirectoryLookupFailed
from ..directory.schemas import PhysicianContactProfile, PhysicianIdentity
from ..directory.service import PhysicianDirectory
from ..exceptions import AppException, NetworkError
from .exceptions import ApprovalDenied, ChannelUnavailable, InvalidTransition, InvariantViolation
from .methods import AppApproval, AttestationStrategy, EmailOTP, ManualApproval, MethodRegistry, method_availability
from .schemas import AttestationContext, AttestationMethod, AttestationRecord, METHOD_CONFIDENCE, MethodProof

# Set up logging
logger = logging.getLogger(__name__)

# Failures that keep the session in Authenticating for a retry
RETRYABLE_FAILURES = (ChallengeError, NetworkError, ApprovalDenied, DirectoryLookupFailed)

# ============================================================================
# STATES AND EVENTS
# ============================================================================

@dataclass(frozen=True)
class MethodSelection:
    name = "MethodSelection"

@dataclass(frozen=True)
class Authenticating:
    method: AttestationMethod
    name = "Authenticating"

@dataclass(frozen=True)
class Succeeded:
    record: AttestationRecord
    name = "Succeeded"

SessionState = Union[MethodSelection, Authenticating, Succeeded]

@dataclass(frozen=True)
class SelectMethod:
    method: AttestationMethod

@dataclass(frozen=True)
class NavigateBack:
    pass

@dataclass(frozen=True)
class VerificationSucceeded:
    record: AttestationRecord

SessionEvent = Union[SelectMethod, NavigateBack, VerificationSucceeded]

def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Compute the next session state.

    Raises:
        InvalidTransition: If the event is not allowed in ``state``
    """
    if isinstance(state, MethodSelection) and isinstance(event, SelectMethod):
        return Authenticating(method=event.method)
    if isinstance(state, Authenticating) and isinstance(event, NavigateBack):
        return MethodSelection()
    if isinstance(state, Authenticating) and isinstance(event, VerificationSucceeded):
        if event.record.method != state.method:
            raise InvalidTransition(
                f"A {event.record.method.value} result cannot complete a {state.method.value} attestation"
            )
        return Succeeded(record=event.record)
    raise InvalidTransition(f"{type(event).__name__} is not allowed in state {state.name}")

# ============================================================================
# SESSION
# ============================================================================

@dataclass
class Notification:
    """A failure reported to the user; the session stays where it was."""
    code: str
    message: str
    retryable: bool
    error: Optional[AppException] = None

    @classmethod
    def from_error(cls, error: AppException) -> "Notification":
        return cls(code=error.code, message=error.detail, retryable=error.retryable, error=error)

@dataclass
class StepResult:
    """Outcome of a user-driven step."""
    state: SessionState
    step: Dict[str, Any] = field(default_factory=dict)
    notification: Optional[Notification] = None

    @property
    def ok(self) -> bool:
        return self.notification is None

class AttestationSession:
    """
    One physician attestation for one document.

    Every step returns a StepResult. Directory, network, challenge and
    approval failures become a retryable notification instead of escaping.
    """

    def __init__(
        self,
        identity: PhysicianIdentity,
        context: AttestationContext,
        directory: PhysicianDirectory,
        methods: MethodRegistry,
        client: Optional[ClientContext] = None,
        clock: Callable[[], datetime] = utcnow,
        session_id: Optional[str] = None
    ):
        self.session_id = session_id or str(uuid.uuid4())
        self.identity = identity
        self.context = context
        self.client = client or ClientContext()
        self._directory = directory
        self._methods = methods
        self._clock = clock
        self.state: SessionState = MethodSelection()
        self.profile: Optional[PhysicianContactProfile] = None
        self.strategy: Optional[AttestationStrategy] = None
        self.notification: Optional[Notification] = None
        self.closed = False

    @property
    def document_id(self) -> str:
        return self.context.document_id

    @property
    def succeeded(self) -> bool:
        return isinstance(self.state, Succeeded)

    @property
    def record(self) -> AttestationRecord:
        if not isinstance(self.state, Succeeded):
            raise InvariantViolation(
                f"Attestation record read from session {self.session_id} in state {self.state.name}"
            )
        return self.state.record

    async def open(self) -> "AttestationSession":
        """
        Resolve the physician's contact channels. A failed lookup degrades
        the profile and never aborts the session.
        """
        self.profile = await self._directory.resolve(self.identity)
        if self.profile.lookup_failed:
            self.notification = Notification.from_error(DirectoryLookupFailed(self.identity.license_number))
        logger.info(
            f"Attestation session {self.session_id} opened for license {self.identity.license_number} "
            f"(document {self.document_id})"
        )
        return self

    # ------------------------------------------------------------------
    # Method selection
    # ------------------------------------------------------------------

    def method_availability(self) -> Dict[AttestationMethod, Optional[str]]:
        self._require_profile()
        return method_availability(self.profile)

    def available_methods(self) -> List[AttestationMethod]:
        return [method for method, reason in self.method_availability().items() if reason is None]

    def unavailable_methods(self) -> Dict[AttestationMethod, str]:
        return {method: reason for method, reason in self.method_availability().items() if reason is not None}

    async def select_method(self, method: AttestationMethod) -> StepResult:
        """
        Enter Authenticating with ``method``.

        Raises:
            ChannelUnavailable: If the method needs a channel the profile lacks
            InvalidTransition: If not in MethodSelection
        """
        self._require_live()
        reason = self.method_availability().get(method)
        if reason is not None:
            raise ChannelUnavailable(f"{method.value} is unavailable: {reason}")
        next_state = transition(self.state, SelectMethod(method))
        self.strategy = self._methods.create(method, self.profile, self.context)
        self.state = next_state
        self.notification = None
        logger.info(f"Session {self.session_id}: method {method.value} selected")
        return self._result()

    async def back(self) -> StepResult:
        """
        Return to method selection, releasing whatever the method holds.
        """
        self._require_live()
        next_state = transition(self.state, NavigateBack())
        method = self.state.method
        strategy = self.strategy
        self.strategy = None
        self.state = next_state
        await strategy.cancel()
        logger.info(f"Session {self.session_id}: back to method selection from {method.value}")
        self.notification = None
        return self._result()

    # ------------------------------------------------------------------
    # Email OTP
    # ------------------------------------------------------------------

    async def request_code(self) -> StepResult:
        strategy = self._strategy_for(EmailOTP)
        return await self._attempt(strategy.request_code)

    async def resend_code(self) -> StepResult:
        strategy = self._strategy_for(EmailOTP)
        return await self._attempt(strategy.resend)

    async def submit_code(self, code: str) -> StepResult:
        strategy = self._strategy_for(EmailOTP)
        return await self._attempt(lambda: strategy.submit_code(code))

    # ------------------------------------------------------------------
    # App approval
    # ------------------------------------------------------------------

    async def start_app_approval(self) -> StepResult:
        strategy = self._strategy_for(AppApproval)
        return await self._attempt(strategy.start)

    async def poll_app_approval(self) -> StepResult:
        strategy = self._strategy_for(AppApproval)
        return await self._attempt(strategy.poll)

    async def await_app_approval(self) -> StepResult:
        """Suspend until the physician decides in the companion app."""
        strategy = self._strategy_for(AppApproval)
        return await self._attempt(strategy.verify)

    # ------------------------------------------------------------------
    # Manual approval
    # ------------------------------------------------------------------

    async def approve_manually(self) -> StepResult:
        strategy = self._strategy_for(ManualApproval)
        return await self._attempt(strategy.verify)

    async def close(self) -> None:
        """
        Discard the session. An in-flight method is cancelled so no
        challenge or approval request stays live.
        """
        if self.closed:
            return
        if isinstance(self.state, Authenticating) and self.strategy is not None:
            await self.strategy.cancel()
        self.strategy = None
        self.closed = True
        logger.info(f"Attestation session {self.session_id} closed in state {self.state.name}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _attempt(self, operation: Callable[[], Awaitable[Any]]) -> StepResult:
        method = self.state.method
        strategy = self.strategy
        try:
            outcome = await operation()
        except RETRYABLE_FAILURES as e:
            logger.warning(f"Session {self.session_id}: {method.value} step failed: {e.code}")
            if self.strategy is strategy:
                self.notification = Notification.from_error(e)
            return self._result()

        if self.strategy is not strategy:
            # Another step succeeded, went back or closed the session meanwhile
            logger.info(f"Session {self.session_id}: late {method.value} step result discarded")
            return self._result()
        self.notification = None
        if isinstance(outcome, MethodProof):
            self._succeed(outcome)
        return self._result()

    def _succeed(self, proof: MethodProof) -> None:
        record = AttestationRecord(
            document_id=self.context.document_id,
            method=proof.method,
            timestamp=self._clock(),
            license_number=self.profile.license_number,
            physician_name=self.profile.display_name,
            proof=proof.value,
            confidence_level=METHOD_CONFIDENCE[proof.method],
            client_ip=self.client.ip_address,
            user_agent=self.client.user_agent
        )
        self.state = transition(self.state, VerificationSucceeded(record))
        self.strategy = None
        logger.info(
            f"Session {self.session_id} succeeded with {record.method.value} "
            f"(confidence {record.confidence_level.value})"
        )

    def _result(self) -> StepResult:
        step = self.strategy.describe() if self.strategy is not None else {}
        return StepResult(state=self.state, step=step, notification=self.notification)

    def _require_profile(self) -> None:
        if self.profile is None:
            raise InvalidTransition("The session has not been opened yet")

    def _require_live(self) -> None:
        self._require_profile()
        if self.closed:
            raise InvalidTransition("The session has been closed")

    def _strategy_for(self, strategy_class) -> AttestationStrategy:
        self._require_live()
        if not isinstance(self.state, Authenticating) or not isinstance(self.strategy, strategy_class):
            raise InvalidTransition(
                f"{strategy_class.method.value} is not the method being authenticated (state {self.state.name})"
            )
        return self.strategy
