"""
Signature block rendering for the final authorization document.
"""
from .schemas import AttestationMethod, AttestationRecord, METHOD_LABELS

PROOF_LABELS = {
    AttestationMethod.APP_APPROVAL: "Approval token",
    AttestationMethod.EMAIL_OTP: "OTP code",
    AttestationMethod.MANUAL_APPROVAL: "Approval code",
}

TOKEN_PREVIEW_LENGTH = 16

def render_signature_block(record: AttestationRecord) -> str:
    """
    Render the physician attestation block printed on the final document.

    App approval tokens are long; only a prefix is printed, the full token
    stays in the stored record.

    Args:
        record: Attestation record

    Returns:
        str: Multi-line signature block
    """
    proof = record.proof
    if record.method == AttestationMethod.APP_APPROVAL and len(proof) > TOKEN_PREVIEW_LENGTH:
        proof = proof[:TOKEN_PREVIEW_LENGTH] + "..."

    lines = [
        "PHYSICIAN ATTESTATION",
        f"Method: {METHOD_LABELS[record.method]}",
        f"Date/Time: {record.timestamp.strftime('%d/%m/%Y %H:%M:%S')} UTC",
        f"Physician: {record.physician_name}",
        f"CRM: {record.license_number}",
        f"{PROOF_LABELS[record.method]}: {proof}",
        f"Confidence: {record.confidence_level.value}",
        f"Record: {record.record_id}",
    ]
    return "\n".join(lines)
