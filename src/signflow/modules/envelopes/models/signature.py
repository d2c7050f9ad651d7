import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class Signature(Base):
    __tablename__ = "signatures"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    signer_id = Column(String(36), ForeignKey("envelope_signers.id"), unique=True, nullable=False)
    consent_given = Column(Boolean, nullable=False, default=False)
    consent_text = Column(Text, nullable=True)
    image_path = Column(String, nullable=True)
    text_content = Column(String, nullable=True)
    placement = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    signer = relationship("EnvelopeSigner", back_populates="signature")
