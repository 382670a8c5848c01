"""
Companion app backends for the app approval method.

The physician confirms a pending request in a companion application; the
backend reports the decision and, on approval, hands out an opaque token
that becomes the attestation proof. Push delivery to the device is outside
this service.

``InProcessCompanionBackend`` receives decisions through a webhook route and
wakes waiters with an ``asyncio.Event``. ``HttpCompanionBackend`` polls a
remote companion API:

- ``POST approvals``       ``{license, documentId, patientName?, purpose?}`` -> ``{requestId}``
- ``GET  approvals/<id>``  -> ``{status: pending|approved|denied, token?}``
- ``DELETE approvals/<id>``
"""
import asyncio
import enum
import logging
import threading
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from ..core.security import create_approval_token, utcnow
from ..exceptions import NetworkError
from .exceptions import InvalidTransition
from .schemas import AttestationContext

# Set up logging
logger = logging.getLogger(__name__)

class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    CANCELLED = "cancelled"

class ApprovalState(BaseModel):
    """
    Current state of a companion approval request.

    Fields:
    - request_id: Backend request identifier
    - license_number: Physician asked to approve
    - document_id: Document awaiting approval
    - status: pending, approved, denied or cancelled
    - token: Opaque approval token, set once approved
    - created_at: When the request was created
    """
    request_id: str
    license_number: str
    document_id: str
    status: ApprovalStatus = ApprovalStatus.PENDING
    token: Optional[str] = None
    created_at: datetime

    @property
    def decided(self) -> bool:
        return self.status != ApprovalStatus.PENDING

class CompanionBackend:
    """Contract shared by companion backends."""

    async def create_request(self, license_number: str, context: AttestationContext) -> ApprovalState:
        raise NotImplementedError

    async def get_status(self, request_id: str) -> ApprovalState:
        raise NotImplementedError

    async def wait_for_decision(self, request_id: str, timeout: float) -> ApprovalState:
        """
        Suspend until the request is decided.

        Raises:
            NetworkError: If no decision arrives within ``timeout`` seconds
        """
        raise NotImplementedError

    async def cancel(self, request_id: str) -> None:
        raise NotImplementedError

class InProcessCompanionBackend(CompanionBackend):
    """
    Companion backend living inside this service.

    Decisions arrive through ``resolve`` (called by the webhook route), possibly
    from another thread or event loop than the waiter's.
    """

    def __init__(self):
        self._requests: Dict[str, ApprovalState] = {}
        self._waiters: Dict[str, List[Tuple[asyncio.AbstractEventLoop, asyncio.Event]]] = {}
        self._lock = threading.Lock()

    async def create_request(self, license_number: str, context: AttestationContext) -> ApprovalState:
        state = ApprovalState(
            request_id=str(uuid.uuid4()),
            license_number=license_number,
            document_id=context.document_id,
            created_at=utcnow()
        )
        with self._lock:
            self._requests[state.request_id] = state
        logger.info(f"Companion approval request {state.request_id} created for license {license_number}")
        return state

    async def get_status(self, request_id: str) -> ApprovalState:
        with self._lock:
            state = self._requests.get(request_id)
        if state is None:
            raise InvalidTransition(f"Unknown companion approval request {request_id}")
        return state

    async def wait_for_decision(self, request_id: str, timeout: float) -> ApprovalState:
        event = asyncio.Event()
        waiter = (asyncio.get_running_loop(), event)
        with self._lock:
            state = self._requests.get(request_id)
            if state is None:
                raise InvalidTransition(f"Unknown companion approval request {request_id}")
            if state.decided:
                return state
            self._waiters.setdefault(request_id, []).append(waiter)

        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise NetworkError("No confirmation from the companion app yet, please try again")
        finally:
            with self._lock:
                waiters = self._waiters.get(request_id, [])
                if waiter in waiters:
                    waiters.remove(waiter)

        return await self.get_status(request_id)

    async def resolve(self, request_id: str, approved: bool) -> ApprovalState:
        """
        Record the physician's decision and wake any waiter.

        Args:
            request_id: Approval request
            approved: True to approve, False to deny

        Returns:
            ApprovalState: The decided request

        Raises:
            InvalidTransition: If the request is unknown or already decided
        """
        with self._lock:
            state = self._requests.get(request_id)
            if state is None:
                raise InvalidTransition(f"Unknown companion approval request {request_id}")
            if state.decided:
                raise InvalidTransition(f"Companion approval request {request_id} is already {state.status.value}")

            if approved:
                token = create_approval_token({
                    "sub": state.license_number,
                    "req": state.request_id,
                    "doc": state.document_id,
                })
                state = state.model_copy(update={"status": ApprovalStatus.APPROVED, "token": token})
            else:
                state = state.model_copy(update={"status": ApprovalStatus.DENIED})
            self._requests[request_id] = state
            waiters = list(self._waiters.pop(request_id, []))

        for loop, event in waiters:
            loop.call_soon_threadsafe(event.set)

        logger.info(f"Companion approval request {request_id} {state.status.value}")
        return state

    async def cancel(self, request_id: str) -> None:
        with self._lock:
            state = self._requests.get(request_id)
            if state is None or state.decided:
                return
            self._requests[request_id] = state.model_copy(update={"status": ApprovalStatus.CANCELLED})
            waiters = list(self._waiters.pop(request_id, []))

        for loop, event in waiters:
            loop.call_soon_threadsafe(event.set)

class HttpCompanionBackend(CompanionBackend):
    """Companion backend reached over HTTP; decisions are polled."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._transport = transport
        self._known: Dict[str, ApprovalState] = {}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport
            ) as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"Companion backend timed out: {str(e)}")
        except httpx.HTTPError as e:
            raise NetworkError(f"Companion backend unreachable: {str(e)}")
        if response.status_code >= 400:
            raise NetworkError(f"Companion backend returned HTTP {response.status_code}")
        return response

    async def create_request(self, license_number: str, context: AttestationContext) -> ApprovalState:
        response = await self._request("POST", "/approvals", json={
            "license": license_number,
            "documentId": context.document_id,
            "patientName": context.patient_name,
            "purpose": context.purpose,
        })
        try:
            request_id = response.json()["requestId"]
        except (ValueError, KeyError) as e:
            raise NetworkError(f"Companion backend returned a malformed response: {str(e)}")
        state = ApprovalState(
            request_id=request_id,
            license_number=license_number,
            document_id=context.document_id,
            created_at=utcnow()
        )
        self._known[request_id] = state
        return state

    async def get_status(self, request_id: str) -> ApprovalState:
        known = self._known.get(request_id)
        if known is None:
            raise InvalidTransition(f"Unknown companion approval request {request_id}")
        response = await self._request("GET", f"/approvals/{request_id}")
        try:
            body = response.json()
            status = ApprovalStatus(body["status"])
        except (ValueError, KeyError) as e:
            raise NetworkError(f"Companion backend returned a malformed response: {str(e)}")
        token = body.get("token")
        if status == ApprovalStatus.APPROVED and not token:
            raise NetworkError("Companion backend approved without a token")
        state = known.model_copy(update={"status": status, "token": token})
        self._known[request_id] = state
        return state

    async def wait_for_decision(self, request_id: str, timeout: float) -> ApprovalState:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            state = await self.get_status(request_id)
            if state.decided:
                return state
            if loop.time() + self._poll_interval > deadline:
                raise NetworkError("No confirmation from the companion app yet, please try again")
            await asyncio.sleep(self._poll_interval)

    async def cancel(self, request_id: str) -> None:
        try:
            await self._request("DELETE", f"/approvals/{request_id}")
        except NetworkError as e:
            logger.warning(f"Could not cancel companion approval request {request_id}: {e.detail}")
        self._known.pop(request_id, None)
