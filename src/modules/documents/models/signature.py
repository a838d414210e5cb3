# src/modules/documents/models/signature.py

from sqlalchemy import Column, Integer, ForeignKey, DateTime, String, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from database import Base
from modules.documents.models.user import UserRole

class SignatureState(PyEnum):
    PENDING = "pending"
    SIGNED = "signed"
    REJECTED = "rejected"

class SignatureStep(Base):
    __tablename__ = "signature_steps"
    __table_args__ = (
        UniqueConstraint("document_id", "order", name="uq_signature_steps_document_order"),
    )

    id = Column(Integer, primary_key=True)
    document_id = Column(Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False)
    # Resolved once at initialization, never re-resolved
    signer_id   = Column(Integer, ForeignKey("users.id"), nullable=False)
    order       = Column(Integer, nullable=False)
    role        = Column(Enum(UserRole), nullable=False)
    state       = Column(Enum(SignatureState), nullable=False, default=SignatureState.PENDING)
    comment     = Column(String(1024), nullable=True)
    acted_at    = Column(DateTime, nullable=True)

    document = relationship("Document", back_populates="signatures")
    signer   = relationship("User")
