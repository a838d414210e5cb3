from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Boolean, Column, Integer, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship

from database import Base

class NotificationKind(PyEnum):
    SIGNATURE_REQUIRED = "signature_required"
    SIGNATURE_REMINDER = "signature_reminder"
    DOCUMENT_REJECTED = "document_rejected"
    DOCUMENT_COMPLETED = "document_completed"

class Notification(Base):
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    kind = Column(Enum(NotificationKind), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(String(1024), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    user = relationship("User", back_populates="notifications")
    # No FK: notifications outlive deleted documents
    document_id = Column(Integer, nullable=True, index=True)
    read = Column(Boolean, default=False)
