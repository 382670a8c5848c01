"""
Tests for the signature block printed on authorized documents.
"""
from datetime import datetime, timezone

from medattest.attestation.schemas import AttestationMethod, AttestationRecord, ConfidenceLevel
from medattest.attestation.signature import render_signature_block


def make_record(method, proof, confidence_level):
    return AttestationRecord(
        record_id="rec-1",
        document_id="GUIA-001",
        method=method,
        timestamp=datetime(2026, 3, 2, 9, 5, 30, tzinfo=timezone.utc),
        license_number="CRM123",
        physician_name="Dr. Ana Souza",
        proof=proof,
        confidence_level=confidence_level,
        client_ip="127.0.0.1",
        user_agent="pytest"
    )


def test_email_otp_block():
    block = render_signature_block(make_record(AttestationMethod.EMAIL_OTP, "482913", ConfidenceLevel.SUBSTANTIAL))

    assert block.splitlines() == [
        "PHYSICIAN ATTESTATION",
        "Method: Email code",
        "Date/Time: 02/03/2026 09:05:30 UTC",
        "Physician: Dr. Ana Souza",
        "CRM: CRM123",
        "OTP code: 482913",
        "Confidence: SUBSTANTIAL",
        "Record: rec-1",
    ]


def test_app_approval_token_is_shortened():
    token = "eyJhbGciOiJIUzI1NiJ9.payload.signature"

    block = render_signature_block(make_record(AttestationMethod.APP_APPROVAL, token, ConfidenceLevel.HIGH))

    assert "Approval token: eyJhbGciOiJIUzI1..." in block
    assert token not in block
