import uuid
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class EnvelopeStatus(PyEnum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    COMPLETED = "COMPLETED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"


TERMINAL_STATUSES = frozenset({
    EnvelopeStatus.COMPLETED,
    EnvelopeStatus.DECLINED,
    EnvelopeStatus.VOIDED,
})

SIGNABLE_STATUSES = frozenset({
    EnvelopeStatus.SENT,
    EnvelopeStatus.PARTIALLY_SIGNED,
})

# Estados en los que cualquier destinatario puede verificarse y consultar el sobre
VERIFIABLE_STATUSES = SIGNABLE_STATUSES | {EnvelopeStatus.COMPLETED}


class Envelope(Base):
    __tablename__ = 'envelopes'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    document_id = Column(String(36), ForeignKey('documents.id'), nullable=False)
    status = Column(Enum(EnvelopeStatus), nullable=False, default=EnvelopeStatus.DRAFT)
    subject = Column(String(255), nullable=True)
    message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    completed_at = Column(DateTime, nullable=True)
    voided_at = Column(DateTime, nullable=True)
    void_reason = Column(Text, nullable=True)

    owner = relationship("User", back_populates="envelopes")
    document = relationship("Document", back_populates="envelopes")
    signers = relationship(
        "EnvelopeSigner",
        back_populates="envelope",
        order_by="EnvelopeSigner.routing_order",
        cascade="all, delete-orphan",
    )
    fields = relationship(
        "DocumentField",
        back_populates="envelope",
        order_by="DocumentField.created_at",
        cascade="all, delete-orphan",
    )
    audit_logs = relationship(
        "AuditLog",
        back_populates="envelope",
        order_by="AuditLog.id",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
