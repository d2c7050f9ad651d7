import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class Document(Base):
    __tablename__ = 'documents'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(36), ForeignKey('users.id'), nullable=False)
    original_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False, default="application/pdf")
    size_bytes = Column(Integer, nullable=False)
    storage_path = Column(String, nullable=False)
    # Calculado una sola vez al subir; nunca cambia
    original_hash = Column(String(64), nullable=False)

    # Última versión completa firmada (firmas + pie de cumplimiento)
    signed_pdf_path = Column(String, nullable=True)
    complete_signed_pdf_hash = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    owner = relationship("User", back_populates="documents")
    envelopes = relationship("Envelope", back_populates="document")
    signature_history = relationship(
        "SignatureHistory",
        back_populates="document",
        order_by="SignatureHistory.step",
    )

    @property
    def current_path(self) -> str:
        return self.signed_pdf_path or self.storage_path

    @property
    def current_hash(self) -> str:
        return self.complete_signed_pdf_hash or self.original_hash
