import os
from typing import List

from fastapi import APIRouter, UploadFile, File, HTTPException, Depends, Response, status
from sqlalchemy.orm import Session

from database import get_db
from modules.auth.controllers.auth_controller import get_current_user
from modules.auth.dependencies import require_document_permission
from modules.documents.controllers.http_errors import to_http_exception
from modules.documents.models.document import Document, DocumentStatus
from modules.documents.models.user import User
from modules.documents.repositories.document_repository import DocumentRepository
from modules.documents.schemas.document_schemas import (
    DocumentCreate, DocumentUpdate, DocumentResponse, DocumentPermissionsResponse
)
from modules.documents.services.document_service import DocumentService
from modules.documents.services.errors import WorkflowError
from modules.documents.services.permission import document_permissions
from settings import get_settings

router = APIRouter(tags=["documents"])

@router.post("", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
def create_document(
    payload: DocumentCreate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        doc = DocumentService.create_document(
            db, current_user.id, payload.title, payload.document_type, payload.description
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return DocumentResponse.from_document(doc)

@router.get("", response_model=List[DocumentResponse])
def list_documents(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return [DocumentResponse.from_document(d) for d in DocumentService.get_documents_for_user(db, current_user)]

@router.get("/awaiting-signature", response_model=List[DocumentResponse])
def list_awaiting_signature(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Documents whose active step is bound to the current user"""
    docs = DocumentRepository(db).list_awaiting_signer(current_user.id)
    return [DocumentResponse.from_document(d) for d in docs]

@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(document: Document = Depends(require_document_permission("view"))):
    return DocumentResponse.from_document(document)

@router.get("/{document_id}/permissions", response_model=DocumentPermissionsResponse)
def get_document_permissions(
    document_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        doc = DocumentService.get_document(db, document_id)
    except WorkflowError as e:
        raise to_http_exception(e)
    return DocumentPermissionsResponse(**document_permissions(current_user, doc))

@router.patch("/{document_id}", response_model=DocumentResponse)
def update_document(
    document_id: int,
    payload: DocumentUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        doc = DocumentService.update_document(
            db, document_id, current_user.id, payload.model_dump(exclude_unset=True)
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return DocumentResponse.from_document(doc)

@router.put("/{document_id}/content", response_model=DocumentResponse)
async def upload_content(
    document_id: int,
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    settings = get_settings()
    contents = await file.read()
    try:
        doc = DocumentService.upload_content(
            db, document_id, current_user.id, contents, file.filename, file.content_type,
            settings.upload_dir, settings.max_file_size
        )
    except WorkflowError as e:
        raise to_http_exception(e)
    return DocumentResponse.from_document(doc)

@router.delete("/{document_id}")
def delete_document(
    document_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        DocumentService.delete_document(db, document_id, current_user.id)
    except WorkflowError as e:
        raise to_http_exception(e)
    return {"message": "Document supprimé", "document_id": document_id}

@router.get("/{document_id}/download")
def download_document(document: Document = Depends(require_document_permission("download"))):
    """Returns the archived, fully signed PDF."""
    if document.status != DocumentStatus.COMPLETED or not document.final_file_path:
        raise HTTPException(status.HTTP_409_CONFLICT, "Le document n'est pas encore finalisé")
    if not os.path.exists(document.final_file_path):
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Archive introuvable")

    with open(document.final_file_path, "rb") as f:
        data = f.read()
    filename = os.path.basename(document.final_file_path)
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
