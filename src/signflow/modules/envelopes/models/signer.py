import uuid
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from signflow.database import Base


class SignerRole(PyEnum):
    SIGNER = "SIGNER"
    CC = "CC"
    VIEWER = "VIEWER"


class EnvelopeSigner(Base):
    __tablename__ = 'envelope_signers'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    envelope_id = Column(String(36), ForeignKey('envelopes.id'), nullable=False)
    email = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(Enum(SignerRole), nullable=False, default=SignerRole.SIGNER)
    routing_order = Column(Integer, nullable=False, default=1)

    # Se emite al enviar el sobre
    signing_link = Column(String(64), unique=True, nullable=True)

    otp_code = Column(String(16), nullable=True)
    otp_expiry = Column(DateTime, nullable=True)
    otp_verified = Column(Boolean, nullable=False, default=False)

    session_token = Column(String(64), unique=True, nullable=True)
    session_expiry = Column(DateTime, nullable=True)

    signed_at = Column(DateTime, nullable=True)
    declined_at = Column(DateTime, nullable=True)
    decline_reason = Column(Text, nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    envelope = relationship("Envelope", back_populates="signers")
    fields = relationship("DocumentField", back_populates="signer")
    signature = relationship(
        "Signature",
        back_populates="signer",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_signing_party(self) -> bool:
        return self.role == SignerRole.SIGNER

    @property
    def has_acted(self) -> bool:
        return self.signed_at is not None or self.declined_at is not None
