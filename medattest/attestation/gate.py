"""
Attestation gate - the fail-closed wrapper around a protected action.

The protected action runs only with a record from a session that reached
Succeeded. Leaving early goes through an explicit confirmation step.

    OPEN --REQUEST_CANCEL--> CONFIRMING_CANCEL --CONFIRM_CANCEL--> ABANDONED
                             CONFIRMING_CANCEL --DISMISS_CANCEL--> OPEN
    OPEN | CONFIRMING_CANCEL --RELEASE (session succeeded)--> RELEASED
"""
import enum
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from ..core.client_context import ClientContext
from ..core.security import utcnow
from ..directory.schemas import PhysicianIdentity
from ..directory.service import PhysicianDirectory
from .exceptions import (
    AttestationRequired, CancelConfirmationRequired, GateClosed,
    InvalidTransition, UserCancelled, CANCEL_PROMPT
)
from .methods import MethodRegistry
from .schemas import AttestationContext, AttestationRecord
from .session import AttestationSession

# Set up logging
logger = logging.getLogger(__name__)

MANDATORY_NOTICE = (
    "Physician authentication is mandatory to validate this authorization request. "
    "Without it the document has no legal validity."
)

class GateStatus(str, enum.Enum):
    OPEN = "OPEN"
    CONFIRMING_CANCEL = "CONFIRMING_CANCEL"
    RELEASED = "RELEASED"
    ABANDONED = "ABANDONED"

class GateEvent(str, enum.Enum):
    REQUEST_CANCEL = "REQUEST_CANCEL"
    CONFIRM_CANCEL = "CONFIRM_CANCEL"
    DISMISS_CANCEL = "DISMISS_CANCEL"
    RELEASE = "RELEASE"

def next_gate_status(status: GateStatus, event: GateEvent, session_succeeded: bool) -> GateStatus:
    """
    Compute the next gate status.

    Args:
        status: Current status
        event: Requested gate event
        session_succeeded: Whether the wrapped session reached Succeeded

    Raises:
        GateClosed: If the gate was already released or abandoned
        AttestationRequired: On release before the session succeeded
        CancelConfirmationRequired: On a confirmation that was never asked for
        InvalidTransition: On any other event not allowed in ``status``
    """
    if status in (GateStatus.RELEASED, GateStatus.ABANDONED):
        raise GateClosed()

    if event == GateEvent.RELEASE:
        if not session_succeeded:
            raise AttestationRequired()
        return GateStatus.RELEASED

    if status == GateStatus.OPEN:
        if event == GateEvent.REQUEST_CANCEL:
            # Nothing mandatory is lost once a record exists
            return GateStatus.ABANDONED if session_succeeded else GateStatus.CONFIRMING_CANCEL
        if event == GateEvent.CONFIRM_CANCEL:
            raise CancelConfirmationRequired()
        raise InvalidTransition("There is no pending cancel confirmation")

    # CONFIRMING_CANCEL
    if event == GateEvent.CONFIRM_CANCEL:
        return GateStatus.ABANDONED
    if event == GateEvent.DISMISS_CANCEL:
        return GateStatus.OPEN
    raise InvalidTransition("Answer the pending cancel confirmation first")

Interaction = Callable[[AttestationSession], Awaitable[Any]]
Confirmation = Callable[[str], Union[bool, Awaitable[bool]]]

async def _resolve(value):
    if inspect.isawaitable(value):
        return await value
    return value

class AttestationGate:
    """
    Owns one attestation session for one protected action.
    """

    def __init__(
        self,
        directory: PhysicianDirectory,
        methods: MethodRegistry,
        clock: Callable[[], datetime] = utcnow
    ):
        self._directory = directory
        self._methods = methods
        self._clock = clock
        self.status = GateStatus.OPEN
        self._session: Optional[AttestationSession] = None
        self._releasing = False

    @property
    def session(self) -> AttestationSession:
        """
        The wrapped session, usable only while the gate is open.

        Raises:
            GateClosed: After release or abandonment
            InvalidTransition: While a cancel confirmation is pending
            AttestationRequired: Before ``open``
        """
        if self.status in (GateStatus.RELEASED, GateStatus.ABANDONED):
            raise GateClosed()
        if self.status == GateStatus.CONFIRMING_CANCEL:
            raise InvalidTransition("Answer the pending cancel confirmation first")
        if self._session is None:
            raise AttestationRequired("No attestation session has been opened")
        return self._session

    @property
    def current_session(self) -> Optional[AttestationSession]:
        return self._session

    async def open(
        self,
        identity: PhysicianIdentity,
        context: AttestationContext,
        client: Optional[ClientContext] = None,
        session_id: Optional[str] = None
    ) -> AttestationSession:
        if self._session is not None or self.status != GateStatus.OPEN:
            raise GateClosed("This gate already owns an attestation session")
        session = AttestationSession(
            identity, context, self._directory, self._methods,
            client=client, clock=self._clock, session_id=session_id
        )
        self._session = await session.open()
        return self._session

    def _advance(self, event: GateEvent) -> GateStatus:
        succeeded = self._session is not None and self._session.succeeded
        self.status = next_gate_status(self.status, event, succeeded)
        return self.status

    async def request_cancel(self) -> GateStatus:
        """
        Ask to leave. Before success this only opens the confirmation step;
        the caller shows ``CANCEL_PROMPT``.
        """
        status = self._advance(GateEvent.REQUEST_CANCEL)
        if status == GateStatus.ABANDONED:
            await self._teardown()
        return status

    async def confirm_cancel(self) -> GateStatus:
        """Abandon the attestation after the user confirmed."""
        self._advance(GateEvent.CONFIRM_CANCEL)
        logger.warning(
            f"Attestation abandoned for document "
            f"{self._session.document_id if self._session else 'unknown'}: request has no legal validity"
        )
        await self._teardown()
        return self.status

    def dismiss_cancel(self) -> GateStatus:
        """Resume the session after the user declined to cancel."""
        return self._advance(GateEvent.DISMISS_CANCEL)

    async def release(self, action: Callable[[AttestationRecord], Any]) -> AttestationRecord:
        """
        Invoke the protected action with the record, exactly once.

        The gate closes only after the action returns. If the action raises,
        the gate stays open on the succeeded session and release may be
        retried.

        Raises:
            AttestationRequired: If the session has not succeeded
            GateClosed: If the gate was already released or abandoned
            InvalidTransition: While another release is running
        """
        succeeded = self._session is not None and self._session.succeeded
        released = next_gate_status(self.status, GateEvent.RELEASE, succeeded)
        if self._releasing:
            raise InvalidTransition("This attestation is already being completed")
        record = self._session.record

        self._releasing = True
        try:
            await _resolve(action(record))
        except Exception as e:
            logger.error(f"Protected action failed for document {record.document_id}, gate stays open: {str(e)}")
            raise
        finally:
            self._releasing = False

        self.status = released
        await self._teardown()
        logger.info(f"Gate released document {record.document_id} with record {record.record_id}")
        return record

    async def guard(
        self,
        action: Callable[[AttestationRecord], Any],
        identity: PhysicianIdentity,
        context: AttestationContext,
        interact: Interaction,
        confirm_abandon: Confirmation,
        client: Optional[ClientContext] = None
    ) -> AttestationRecord:
        """
        Run a full attestation around ``action``.

        ``interact`` drives the session (select a method, submit codes...)
        and returns when the user is done or wants to leave. If the session
        has not succeeded by then, ``confirm_abandon`` is asked with the
        mandatory-authentication prompt; declining resumes the interaction.

        Returns:
            AttestationRecord: The record the action was invoked with

        Raises:
            UserCancelled: If the user confirmed abandoning the attestation
        """
        session = await self.open(identity, context, client)
        try:
            while True:
                await interact(session)
                if session.succeeded:
                    return await self.release(action)

                await self.request_cancel()
                if await _resolve(confirm_abandon(CANCEL_PROMPT)):
                    await self.confirm_cancel()
                    raise UserCancelled()
                self.dismiss_cancel()
        except BaseException:
            # Cancellation or an unexpected error leaves nothing live behind
            await self._abandon()
            raise

    async def _abandon(self) -> None:
        if self.status in (GateStatus.RELEASED, GateStatus.ABANDONED):
            return
        self.status = GateStatus.ABANDONED
        logger.warning(
            f"Attestation interrupted for document "
            f"{self._session.document_id if self._session else 'unknown'}: request has no legal validity"
        )
        await self._teardown()

    async def _teardown(self) -> None:
        if self._session is not None:
            await self._session.close()
