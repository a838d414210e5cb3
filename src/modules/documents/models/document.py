from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from enum import Enum as PyEnum
from database import Base

class DocumentType(PyEnum):
    RELEVE_NOTES = "releve_notes"
    LETTRE_HONORAIRES = "lettre_honoraires"
    PV_CONSEIL = "pv_conseil"
    CORRESPONDANCE = "correspondance"

class DocumentStatus(PyEnum):
    DRAFT = "draft"
    PENDING_SIGNATURE = "pending_signature"
    COMPLETED = "completed"
    REJECTED = "rejected"


class Document(Base):
    __tablename__ = 'documents'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    document_type = Column(Enum(DocumentType), nullable=False)
    # Content handle owned by the storage layer; archived artifact once completed
    file_path = Column(String, nullable=True)
    final_file_path = Column(String, nullable=True)
    status = Column(Enum(DocumentStatus), nullable=False, default=DocumentStatus.DRAFT, index=True)
    current_signer_id = Column(Integer, ForeignKey('users.id'), nullable=True, index=True)
    # Bumped on every workflow transition; part of the conditional update guard
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    rejected_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    creator = relationship("User", back_populates="documents", foreign_keys=[created_by])
    current_signer = relationship("User", foreign_keys=[current_signer_id])

    signatures = relationship(
        "SignatureStep",
        back_populates="document",
        order_by="SignatureStep.order",
        cascade="all, delete-orphan",
    )
