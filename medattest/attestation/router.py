"""
Attestation Router - Session lifecycle, companion webhook and record access.

Step endpoints answer with a snapshot of the session. When a step fails
(wrong code, network error, denied approval) the session stays where it was
and the failure is returned as an error response the client may retry.
"""
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import List
import logging

from ..database import get_db
from ..core.audit_service import get_audit_trail
from ..runtime import Runtime, get_runtime
from ..core.client_context import capture_client_context
from .companion import InProcessCompanionBackend
from .exceptions import InvalidTransition, CANCEL_PROMPT
from .gate import AttestationGate, GateStatus, MANDATORY_NOTICE
from .schemas import (
    OpenSessionRequest, SelectMethodRequest, SubmitCodeRequest,
    CancelRequest, ApprovalDecisionRequest,
    SessionResponse, ProfileSummary, NotificationResponse,
    AttestationRecord, AttestationRecordResponse, AuditLogResponse
)
from .service import get_record, list_records_for_document
from .session import Authenticating, StepResult, Succeeded
from .signature import render_signature_block
from ..challenges.delivery import mask_destination

# Set up logging
logger = logging.getLogger(__name__)

router = APIRouter()

def _session_response(gate: AttestationGate, result: StepResult = None) -> SessionResponse:
    session = gate.current_session
    state = session.state
    notification = result.notification if result is not None else session.notification

    method = None
    if isinstance(state, Authenticating):
        method = state.method
    elif isinstance(state, Succeeded):
        method = state.record.method

    if isinstance(state, Succeeded):
        record = state.record
        step = {
            "record_id": record.record_id,
            "confidence_level": record.confidence_level.value,
            "timestamp": record.timestamp.isoformat()
        }
    elif result is not None:
        step = result.step
    else:
        step = session.strategy.describe() if session.strategy is not None else {}

    profile = session.profile
    return SessionResponse(
        session_id=session.session_id,
        document_id=session.document_id,
        state=state.name,
        method=method,
        available_methods=session.available_methods(),
        unavailable_methods={method.value: reason for method, reason in session.unavailable_methods().items()},
        profile=ProfileSummary(
            license_number=profile.license_number,
            display_name=profile.display_name,
            email_hint=mask_destination(profile.email) if profile.email else None,
            phone_hint=mask_destination(profile.phone) if profile.phone else None,
            lookup_failed=profile.lookup_failed
        ),
        gate_status=gate.status.value,
        notification=NotificationResponse(
            code=notification.code,
            message=notification.message,
            retryable=notification.retryable
        ) if notification is not None else None,
        step=step,
        notice=CANCEL_PROMPT if gate.status == GateStatus.CONFIRMING_CANCEL else MANDATORY_NOTICE
    )

def _step_response(gate: AttestationGate, result: StepResult) -> SessionResponse:
    if result.notification is not None and result.notification.error is not None:
        raise result.notification.error
    return _session_response(gate, result)

def _record_response(record: AttestationRecord) -> AttestationRecordResponse:
    return AttestationRecordResponse(record=record, signature_block=render_signature_block(record))

# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def open_session(
    data: OpenSessionRequest,
    request: Request,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Open an attestation session for a document

    The physician's contact channels are resolved once; a failed lookup
    only restricts the available methods.
    """
    client = await capture_client_context(request, lookup_url=runtime.settings.public_ip_lookup_url)
    gate = await runtime.attestations.open_session(data, client)
    return _session_response(gate)

@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Current state of an open session
    """
    return _session_response(runtime.attestations.get_gate(session_id))

@router.post("/sessions/{session_id}/method", response_model=SessionResponse)
async def select_method(
    session_id: str,
    data: SelectMethodRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Choose the verification method
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.select_method(data.method))

@router.post("/sessions/{session_id}/back", response_model=SessionResponse)
async def navigate_back(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Return to method selection; an outstanding code or approval request is invalidated
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.back())

# ============================================================================
# METHOD STEPS
# ============================================================================

@router.post("/sessions/{session_id}/email-otp/request", response_model=SessionResponse)
async def request_email_code(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Send a one-time code to the physician's email
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.request_code())

@router.post("/sessions/{session_id}/email-otp/resend", response_model=SessionResponse)
async def resend_email_code(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Discard the current code and send a new one
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.resend_code())

@router.post("/sessions/{session_id}/email-otp/submit", response_model=SessionResponse)
async def submit_email_code(
    session_id: str,
    data: SubmitCodeRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Submit the code the physician received
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.submit_code(data.code))

@router.post("/sessions/{session_id}/app-approval/start", response_model=SessionResponse)
async def start_app_approval(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Ask the physician to confirm in the companion app
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.start_app_approval())

@router.post("/sessions/{session_id}/app-approval/poll", response_model=SessionResponse)
async def poll_app_approval(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Check once whether the physician has decided
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.poll_app_approval())

@router.post("/sessions/{session_id}/app-approval/wait", response_model=SessionResponse)
async def wait_app_approval(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Long-poll until the physician decides or the approval timeout passes
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.await_app_approval())

@router.post("/sessions/{session_id}/manual-approval", response_model=SessionResponse)
async def approve_manually(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Register an in-person approval and generate its approval code
    """
    gate = runtime.attestations.get_gate(session_id)
    return _step_response(gate, await gate.session.approve_manually())

# ============================================================================
# CANCEL AND COMPLETE
# ============================================================================

@router.post("/sessions/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: str,
    data: CancelRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Abandon the attestation

    The first call (``confirm: false``) only asks for confirmation; the
    attestation is abandoned by a second call with ``confirm: true``.
    """
    if data.confirm:
        gate = await runtime.attestations.confirm_cancel(session_id)
    else:
        gate = await runtime.attestations.request_cancel(session_id)
    return _session_response(gate)

@router.post("/sessions/{session_id}/cancel/dismiss", response_model=SessionResponse)
async def dismiss_cancel(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Keep authenticating after a cancel request
    """
    return _session_response(runtime.attestations.dismiss_cancel(session_id))

@router.post(
    "/sessions/{session_id}/complete",
    response_model=AttestationRecordResponse,
    status_code=status.HTTP_201_CREATED
)
async def complete_session(session_id: str, runtime: Runtime = Depends(get_runtime)):
    """
    Release the gate and store the attestation record

    Refused with 403 until the session has succeeded. A session completes
    once; it is discarded afterwards.
    """
    record = await runtime.attestations.complete(session_id)
    return _record_response(record)

# ============================================================================
# COMPANION WEBHOOK
# ============================================================================

@router.post("/companion/approvals/{request_id}/decision")
async def companion_decision(
    request_id: str,
    data: ApprovalDecisionRequest,
    runtime: Runtime = Depends(get_runtime)
):
    """
    Receive the physician's decision from the companion app
    """
    if not isinstance(runtime.companion, InProcessCompanionBackend):
        raise InvalidTransition("Decisions are handled by the remote companion backend")
    state = await runtime.companion.resolve(request_id, data.approved)
    return {"request_id": state.request_id, "status": state.status.value}

# ============================================================================
# RECORDS
# ============================================================================

@router.get("/records/{record_id}", response_model=AttestationRecordResponse)
async def read_record(record_id: str, db: Session = Depends(get_db)):
    """
    Read a stored attestation record with its signature block
    """
    return _record_response(get_record(db, record_id))

@router.get("/documents/{document_id}/records", response_model=List[AttestationRecordResponse])
async def read_document_records(document_id: str, db: Session = Depends(get_db)):
    """
    All attestation records stored for a document
    """
    return [_record_response(record) for record in list_records_for_document(db, document_id)]

@router.get("/physicians/{license_number}/audit", response_model=List[AuditLogResponse])
async def read_audit_trail(license_number: str, limit: int = 100, db: Session = Depends(get_db)):
    """
    Most recent audit entries for a physician, newest first
    """
    return get_audit_trail(db, license_number, limit=limit)
