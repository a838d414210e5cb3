from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from modules.documents.models.document import DocumentStatus, DocumentType
from modules.documents.models.signature import SignatureState
from modules.documents.models.user import UserRole
from modules.documents.services.workflow_service import MAX_COMMENT_LENGTH, WorkflowStatus

class DocumentCreate(BaseModel):
    title: str
    document_type: DocumentType
    description: Optional[str] = None

class DocumentUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    document_type: Optional[DocumentType] = None

class DocumentResponse(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    document_type: DocumentType
    status: DocumentStatus
    current_signer_id: Optional[int] = None
    created_by: int
    has_content: bool = False
    final_file_path: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_document(cls, document) -> "DocumentResponse":
        response = cls.model_validate(document)
        response.has_content = bool(document.file_path)
        return response

class DocumentPermissionsResponse(BaseModel):
    can_view: bool
    can_edit: bool
    can_sign: bool
    can_download: bool

class SignRequest(BaseModel):
    comment: Optional[str] = Field(default=None, max_length=MAX_COMMENT_LENGTH)

class RejectRequest(BaseModel):
    reason: str = Field(max_length=MAX_COMMENT_LENGTH)

class SignatureStepResponse(BaseModel):
    order: int
    role: UserRole
    signer_id: int
    signer_name: str
    state: SignatureState
    acted_at: Optional[datetime] = None
    comment: Optional[str] = None

    model_config = {"from_attributes": True}

class WorkflowResponse(BaseModel):
    document_id: int
    document_status: DocumentStatus
    current_signer_id: Optional[int] = None
    steps: List[SignatureStepResponse]
    current_step: int
    status: WorkflowStatus

    model_config = {"from_attributes": True}
