# src/modules/documents/controllers/signature_controller.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from modules.auth.controllers.auth_controller import get_current_user
from modules.auth.dependencies import require_document_permission
from modules.documents.controllers.http_errors import to_http_exception
from modules.documents.models.document import Document
from modules.documents.models.user import User
from modules.documents.schemas.document_schemas import SignRequest, RejectRequest, WorkflowResponse
from modules.documents.services.errors import WorkflowError
from modules.documents.services.finalization_service import PdfArchiveFinalizationService
from modules.documents.services.workflow_service import WorkflowService
from modules.documents.services.workflow_templates import get_workflow_templates
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.notification_service import NotificationService
from settings import get_settings

router = APIRouter(tags=["workflow"])

def get_workflow_service(db: Session = Depends(get_db)) -> WorkflowService:
    settings = get_settings()
    return WorkflowService(
        db,
        finalization_service=PdfArchiveFinalizationService(settings.archive_dir),
        notifier=NotificationService(NotificationRepository(db)),
        templates=get_workflow_templates(),
        default_attestation=settings.default_attestation,
        download_authorized_roles=settings.download_authorized_roles,
        missing_signer_policy=settings.missing_signer_policy,
    )

@router.post("/{document_id}/workflow:init", response_model=WorkflowResponse)
def initialize_workflow(
    document_id: int,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Submits a draft to its signature chain."""
    try:
        service.initialize_workflow(document_id, current_user.id)
        return service.get_workflow(document_id)
    except WorkflowError as e:
        raise to_http_exception(e)

@router.post("/{document_id}/workflow:sign", response_model=WorkflowResponse)
def sign_document(
    document_id: int,
    payload: SignRequest,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Signs the active step; only its bound signer may do so."""
    try:
        service.sign(document_id, current_user.id, payload.comment)
        return service.get_workflow(document_id)
    except WorkflowError as e:
        raise to_http_exception(e)

@router.post("/{document_id}/workflow:reject", response_model=WorkflowResponse)
def reject_document(
    document_id: int,
    payload: RejectRequest,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        service.reject(document_id, current_user.id, payload.reason)
        return service.get_workflow(document_id)
    except WorkflowError as e:
        raise to_http_exception(e)

@router.post("/{document_id}/workflow:finalize", response_model=WorkflowResponse)
def retry_finalization(
    document_id: int,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    """Retries archiving a fully signed document; no-op once completed."""
    try:
        service.retry_finalization(document_id, current_user.id)
        return service.get_workflow(document_id)
    except WorkflowError as e:
        raise to_http_exception(e)

@router.get("/{document_id}/workflow", response_model=WorkflowResponse)
def get_workflow(
    document: Document = Depends(require_document_permission("view")),
    service: WorkflowService = Depends(get_workflow_service)
):
    try:
        return service.get_workflow(document.id)
    except WorkflowError as e:
        raise to_http_exception(e)

@router.get("/{document_id}/workflow/can-sign")
def can_sign(
    document_id: int,
    current_user: User = Depends(get_current_user),
    service: WorkflowService = Depends(get_workflow_service)
):
    return {"document_id": document_id, "can_sign": service.can_user_sign(document_id, current_user.id)}
