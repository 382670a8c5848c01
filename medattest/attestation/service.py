"""
Attestation service layer - open gates behind the HTTP routes, and record storage.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..core.audit_service import create_audit_log
from ..core.client_context import ClientContext
from ..core.security import as_utc, utcnow
from ..directory.schemas import PhysicianIdentity
from ..directory.service import PhysicianDirectory
from .exceptions import RecordNotFound, SessionNotFound
from .gate import AttestationGate, GateStatus
from .methods import MethodRegistry
from .models import AttestationRecordEntry
from .schemas import AttestationContext, AttestationRecord, OpenSessionRequest

# Set up logging
logger = logging.getLogger(__name__)

# ============================================================================
# RECORD STORAGE
# ============================================================================

async def persist_record(db: Session, record: AttestationRecord) -> AttestationRecordEntry:
    """
    Store an attestation record and audit it.

    Args:
        db: Database session
        record: Record released by a gate

    Returns:
        AttestationRecordEntry: The stored row
    """
    entry = AttestationRecordEntry.from_record(record)
    db.add(entry)
    db.commit()
    db.refresh(entry)

    await create_audit_log(
        db,
        action="ATTESTATION_RECORDED",
        actor=record.license_number,
        ip_address=record.client_ip,
        details={
            "record_id": record.record_id,
            "document_id": record.document_id,
            "method": record.method.value,
            "confidence_level": record.confidence_level.value
        }
    )
    logger.info(f"Attestation record {record.record_id} stored for document {record.document_id}")
    return entry

def get_record(db: Session, record_id: str) -> AttestationRecord:
    """
    Raises:
        RecordNotFound: If no record has this id
    """
    entry = db.query(AttestationRecordEntry).filter(AttestationRecordEntry.id == record_id).first()
    if not entry:
        raise RecordNotFound()
    return entry.to_record()

def list_records_for_document(db: Session, document_id: str) -> List[AttestationRecord]:
    entries = (
        db.query(AttestationRecordEntry)
        .filter(AttestationRecordEntry.document_id == document_id)
        .order_by(AttestationRecordEntry.timestamp.asc())
        .all()
    )
    return [entry.to_record() for entry in entries]

# ============================================================================
# OPEN SESSIONS
# ============================================================================

@dataclass
class _OpenGate:
    gate: AttestationGate
    last_seen: datetime

class AttestationService:
    """
    Registry of gates opened over HTTP, keyed by session id.

    Gates idle for longer than ``idle_minutes`` are closed and dropped,
    which also invalidates any challenge they still hold.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: PhysicianDirectory,
        methods: MethodRegistry,
        idle_minutes: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self._session_factory = session_factory
        self._directory = directory
        self._methods = methods
        self._idle = timedelta(minutes=idle_minutes or settings.session_idle_minutes)
        self._clock = clock
        self._gates: Dict[str, _OpenGate] = {}
        self._lock = threading.Lock()

    async def open_session(self, data: OpenSessionRequest, client: ClientContext) -> AttestationGate:
        """
        Open a gate and its session for a document.
        """
        await self.purge_idle()

        identity = PhysicianIdentity(license_number=data.license_number, display_name=data.display_name)
        context = AttestationContext(
            document_id=data.document_id,
            patient_name=data.patient_name,
            diagnosis_code=data.diagnosis_code,
            purpose=data.purpose
        )
        gate = AttestationGate(self._directory, self._methods, clock=self._clock)
        session = await gate.open(identity, context, client)

        with self._lock:
            self._gates[session.session_id] = _OpenGate(gate=gate, last_seen=self._clock())

        await self._audit("ATTESTATION_SESSION_OPENED", identity.license_number, client.ip_address, {
            "session_id": session.session_id,
            "document_id": context.document_id,
            "lookup_failed": session.profile.lookup_failed
        })
        return gate

    def get_gate(self, session_id: str) -> AttestationGate:
        """
        Raises:
            SessionNotFound: If the id is unknown or the gate was dropped
        """
        with self._lock:
            entry = self._gates.get(session_id)
            if entry is None:
                raise SessionNotFound()
            entry.last_seen = self._clock()
        return entry.gate

    async def complete(self, session_id: str) -> AttestationRecord:
        """
        Release the gate: the protected action stores the record.

        Raises:
            AttestationRequired: If the session has not succeeded
        """
        gate = self.get_gate(session_id)

        async def store(record: AttestationRecord) -> None:
            with self._session_factory() as db:
                await persist_record(db, record)

        record = await gate.release(store)
        self._forget(session_id)
        return record

    async def request_cancel(self, session_id: str) -> AttestationGate:
        gate = self.get_gate(session_id)
        status = await gate.request_cancel()
        if status == GateStatus.ABANDONED:
            await self._abandoned(session_id, gate)
        return gate

    async def confirm_cancel(self, session_id: str) -> AttestationGate:
        """
        Raises:
            CancelConfirmationRequired: If cancellation was not requested first
        """
        gate = self.get_gate(session_id)
        await gate.confirm_cancel()
        await self._abandoned(session_id, gate)
        return gate

    def dismiss_cancel(self, session_id: str) -> AttestationGate:
        gate = self.get_gate(session_id)
        gate.dismiss_cancel()
        return gate

    async def purge_idle(self) -> int:
        """Close and drop gates idle past the limit. Returns how many were dropped."""
        cutoff = self._clock() - self._idle
        with self._lock:
            stale = [
                (session_id, entry.gate) for session_id, entry in self._gates.items()
                if as_utc(entry.last_seen) < as_utc(cutoff)
            ]
            for session_id, _ in stale:
                del self._gates[session_id]

        for session_id, gate in stale:
            session = gate.current_session
            if session is not None:
                await session.close()
            logger.info(f"Dropped idle attestation session {session_id}")
        return len(stale)

    async def _abandoned(self, session_id: str, gate: AttestationGate) -> None:
        self._forget(session_id)
        session = gate.current_session
        await self._audit("ATTESTATION_ABANDONED", session.identity.license_number, session.client.ip_address, {
            "session_id": session_id,
            "document_id": session.document_id,
            "state": session.state.name
        })

    def _forget(self, session_id: str) -> None:
        with self._lock:
            self._gates.pop(session_id, None)

    async def _audit(self, action: str, license_number: str, ip_address: str, details: dict) -> None:
        with self._session_factory() as db:
            await create_audit_log(db, action=action, actor=license_number, ip_address=ip_address, details=details)
