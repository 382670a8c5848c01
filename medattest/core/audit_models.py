from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func

from ..database import Base

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    actor = Column(String, nullable=True, index=True)  # physician license number when known
    action = Column(String, nullable=False, index=True)
    details = Column(JSON, nullable=True)  # To store additional context as JSON
    ip_address = Column(String, nullable=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, actor={self.actor}, action='{self.action}', timestamp='{self.timestamp}')>"
