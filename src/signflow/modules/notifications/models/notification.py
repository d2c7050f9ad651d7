from sqlalchemy import Boolean, Column, DateTime, Integer, String

from signflow.database import Base
from signflow.utils.clock import utcnow


class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    recipient_email = Column(String, nullable=False, index=True)
    kind = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(2048), nullable=False)
    link = Column(String(1024), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    read = Column(Boolean, default=False)
