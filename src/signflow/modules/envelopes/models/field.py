import uuid
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class FieldType(PyEnum):
    SIGNATURE = "SIGNATURE"
    DATE = "DATE"
    TEXT = "TEXT"
    CHECKBOX = "CHECKBOX"
    INITIAL = "INITIAL"


class DocumentField(Base):
    """Caja normalizada (fracciones de página, origen abajo-izquierda)."""
    __tablename__ = 'document_fields'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    envelope_id = Column(String(36), ForeignKey('envelopes.id'), nullable=False, index=True)
    signer_id = Column(String(36), ForeignKey('envelope_signers.id'), nullable=False, index=True)
    type = Column(Enum(FieldType), nullable=False)
    page = Column(Integer, nullable=False)
    x = Column(Float, nullable=False)
    y = Column(Float, nullable=False)
    width = Column(Float, nullable=False)
    height = Column(Float, nullable=False)
    required = Column(Boolean, nullable=False, default=True)
    label = Column(String(255), nullable=True)
    value = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    envelope = relationship("Envelope", back_populates="fields")
    signer = relationship("EnvelopeSigner", back_populates="fields")
