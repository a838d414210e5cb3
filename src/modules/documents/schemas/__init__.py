from .document_schemas import (
    DocumentCreate, DocumentUpdate, DocumentResponse, DocumentPermissionsResponse,
    SignRequest, RejectRequest, SignatureStepResponse, WorkflowResponse
)

__all__ = [
    'DocumentCreate', 'DocumentUpdate', 'DocumentResponse', 'DocumentPermissionsResponse',
    'SignRequest', 'RejectRequest', 'SignatureStepResponse', 'WorkflowResponse'
]
