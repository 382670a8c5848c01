from sqlalchemy.orm import Session
from fastapi import Request
from typing import Optional, Dict, Any, List

from .audit_models import AuditLog

async def create_audit_log(
    db: Session,
    action: str,
    actor: Optional[str] = None,
    request: Optional[Request] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None
) -> AuditLog:
    """
    Creates an audit log entry.

    Args:
        db: The database session.
        action: A string describing the action performed (e.g., 'OTP_ISSUED', 'ATTESTATION_RECORDED').
        actor: The license number of the physician concerned (if applicable).
        request: The FastAPI request object to extract IP address (if available).
        details: A dictionary containing additional context or data related to the action.
        ip_address: Explicit client address, used when no request object is at hand.

    Returns:
        The created AuditLog object.
    """
    if ip_address is None and request and request.client:
        ip_address = request.client.host

    audit_entry = AuditLog(
        actor=actor,
        action=action,
        ip_address=ip_address,
        details=details
    )
    db.add(audit_entry)
    db.commit()
    db.refresh(audit_entry)
    return audit_entry

def get_audit_trail(db: Session, actor: str, limit: int = 100) -> List[AuditLog]:
    """
    Return the most recent audit entries for a physician, newest first.
    """
    return (
        db.query(AuditLog)
        .filter(AuditLog.actor == actor)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
