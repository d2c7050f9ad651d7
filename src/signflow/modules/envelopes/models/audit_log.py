from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class AuditEvent(PyEnum):
    CREATED = "CREATED"
    SENT = "SENT"
    VIEWED = "VIEWED"
    OTP_REQUESTED = "OTP_REQUESTED"
    OTP_VERIFIED = "OTP_VERIFIED"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"
    COMPLETED = "COMPLETED"
    VOIDED = "VOIDED"
    FIELD_ADDED = "FIELD_ADDED"
    FIELD_UPDATED = "FIELD_UPDATED"
    FIELD_DELETED = "FIELD_DELETED"
    DEVICE_FINGERPRINT_CAPTURED = "DEVICE_FINGERPRINT_CAPTURED"


class AuditLog(Base):
    """Registro de solo-anexado; el orden canónico es (timestamp, id)."""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    envelope_id = Column(String(36), ForeignKey('envelopes.id'), nullable=False, index=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    event = Column(Enum(AuditEvent), nullable=False)
    actor_email = Column(String, nullable=True)
    actor_role = Column(String(32), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    details = Column(JSON, nullable=True)

    envelope = relationship("Envelope", back_populates="audit_logs")
