import uuid
from enum import Enum as PyEnum

from sqlalchemy import Boolean, Column, DateTime, Enum, String
from sqlalchemy.orm import relationship

from signflow.database import Base
from signflow.utils.clock import utcnow


class UserRole(PyEnum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(Base):
    __tablename__ = 'users'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.USER)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    documents = relationship("Document", back_populates="owner")
    envelopes = relationship("Envelope", back_populates="owner")
