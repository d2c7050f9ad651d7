import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class SignatureHistory(Base):
    """Un paso de firma completado; nunca se modifica ni se borra."""
    __tablename__ = "signature_history"
    __table_args__ = (
        UniqueConstraint("document_id", "step", name="uq_signature_history_document_step"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    document_id = Column(String(36), ForeignKey("documents.id"), nullable=False, index=True)
    step = Column(Integer, nullable=False)
    signer_name = Column(String, nullable=False)
    signer_email = Column(String, nullable=False)
    complete_signed_pdf_path = Column(String, nullable=False)
    complete_signed_pdf_hash = Column(String(64), nullable=False)
    signed_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    document = relationship("Document", back_populates="signature_history")
