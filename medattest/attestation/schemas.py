"""
Attestation Schemas - Pydantic models for attestation records, context and API payloads.
"""
from typing import Optional, Dict, List, Any
from pydantic import BaseModel, Field
from datetime import datetime
import enum
import uuid

class AttestationMethod(str, enum.Enum):
    """
    Verification strategies a physician can attest with.

    Methods:
    - APP_APPROVAL: Confirmation in the companion application
    - EMAIL_OTP: One-time code sent to the physician's email
    - MANUAL_APPROVAL: Physically witnessed, in-person approval
    """
    APP_APPROVAL = "AppApproval"
    EMAIL_OTP = "EmailOTP"
    MANUAL_APPROVAL = "ManualApproval"

class ConfidenceLevel(str, enum.Enum):
    """
    Assurance carried by an attestation, ordered LOW < SUBSTANTIAL < HIGH.
    """
    LOW = "LOW"
    SUBSTANTIAL = "SUBSTANTIAL"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

_CONFIDENCE_RANK = {
    ConfidenceLevel.LOW: 1,
    ConfidenceLevel.SUBSTANTIAL: 2,
    ConfidenceLevel.HIGH: 3,
}

METHOD_CONFIDENCE = {
    AttestationMethod.APP_APPROVAL: ConfidenceLevel.HIGH,
    AttestationMethod.EMAIL_OTP: ConfidenceLevel.SUBSTANTIAL,
    AttestationMethod.MANUAL_APPROVAL: ConfidenceLevel.LOW,
}

METHOD_LABELS = {
    AttestationMethod.APP_APPROVAL: "Companion app approval",
    AttestationMethod.EMAIL_OTP: "Email code",
    AttestationMethod.MANUAL_APPROVAL: "Manual approval",
}

class AttestationContext(BaseModel):
    """
    Attestation Context - The request being authorized

    Fields:
    - document_id: Identifier of the authorization document
    - patient_name: Patient the request concerns (optional)
    - diagnosis_code: ICD code of the diagnosis (optional)
    - purpose: Purpose of the request (optional)
    """
    document_id: str = Field(..., min_length=1)
    patient_name: Optional[str] = None
    diagnosis_code: Optional[str] = None
    purpose: Optional[str] = None

    class Config:
        frozen = True

class MethodProof(BaseModel):
    """
    Method-specific artifact demonstrating successful verification.

    Fields:
    - method: Method that produced the proof
    - value: The proof itself (validated code, approval token or approval code)
    - reference: Challenge or approval request the proof belongs to (optional)
    """
    method: AttestationMethod
    value: str
    reference: Optional[str] = None

    class Config:
        frozen = True

class AttestationRecord(BaseModel):
    """
    Attestation Record - Immutable evidence of a physician's approval

    Fields:
    - record_id: Unique record identifier
    - document_id: Authorized document
    - method: Method used
    - timestamp: When the attestation succeeded
    - license_number: Physician license number
    - physician_name: Physician name
    - proof: Method-specific proof
    - confidence_level: Assurance of the method
    - client_ip: Client address (audit hint only)
    - user_agent: Client user agent (audit hint only)
    """
    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_id: str
    method: AttestationMethod
    timestamp: datetime
    license_number: str
    physician_name: str
    proof: str
    confidence_level: ConfidenceLevel
    client_ip: str
    user_agent: str

    class Config:
        frozen = True
        from_attributes = True

# ============================================================================
# API PAYLOADS
# ============================================================================

class OpenSessionRequest(BaseModel):
    """Body of the open-session endpoint"""
    license_number: str = Field(..., min_length=1, description="Physician license number (CRM)")
    display_name: str = Field(..., min_length=1, description="Physician name")
    document_id: str = Field(..., min_length=1, description="Document being authorized")
    patient_name: Optional[str] = None
    diagnosis_code: Optional[str] = None
    purpose: Optional[str] = None

class SelectMethodRequest(BaseModel):
    method: AttestationMethod

class SubmitCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, description="Code as typed; spaces and dashes are ignored")

class CancelRequest(BaseModel):
    confirm: bool = Field(False, description="Explicit confirmation that the mandatory attestation is abandoned")

class ApprovalDecisionRequest(BaseModel):
    approved: bool

class NotificationResponse(BaseModel):
    code: str
    message: str
    retryable: bool

class ProfileSummary(BaseModel):
    license_number: str
    display_name: str
    email_hint: Optional[str] = None
    phone_hint: Optional[str] = None
    lookup_failed: bool = False

class SessionResponse(BaseModel):
    """
    Session Response Schema - Snapshot of an attestation session

    Fields:
    - session_id: Session identifier
    - document_id: Document being authorized
    - state: MethodSelection, Authenticating or Succeeded
    - method: Method being authenticated with (optional)
    - available_methods: Methods that can be selected
    - unavailable_methods: Methods that cannot be selected, with the reason
    - profile: Masked contact profile
    - gate_status: Status of the gate wrapping the session
    - notification: Last retryable failure (optional)
    - step: Method-specific step data (optional)
    """
    session_id: str
    document_id: str
    state: str
    method: Optional[AttestationMethod] = None
    available_methods: List[AttestationMethod]
    unavailable_methods: Dict[str, str] = {}
    profile: Optional[ProfileSummary] = None
    gate_status: str
    notification: Optional[NotificationResponse] = None
    step: Optional[Dict[str, Any]] = None
    notice: str

class AttestationRecordResponse(BaseModel):
    record: AttestationRecord
    signature_block: str

class AuditLogResponse(BaseModel):
    """
    Schema for returning Audit Log entries.

    Fields:
    - id: Audit Log ID
    - actor: License number the action concerns (if known)
    - action: Description of the action performed
    - details: Optional dictionary with additional details about the action
    - ip_address: IP address from which the action was performed
    - timestamp: Timestamp of when the action occurred
    """
    id: int
    actor: Optional[str] = None
    action: str
    details: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True
