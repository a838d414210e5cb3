from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session
from database import get_db
from modules.documents.models.document import Document
from modules.documents.models.user import User
from modules.documents.services.permission import can_view, can_edit, can_download
from modules.auth.controllers.auth_controller import get_current_user

DOCUMENT_CHECKS = {
    "view": can_view,
    "edit": can_edit,
    "download": can_download,
}

def require_document_permission(action: str):
    """Loads the path's document and checks the current user may perform ``action`` on it"""
    check = DOCUMENT_CHECKS[action]

    def dependency(
        document_id: int,
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
    ) -> Document:
        document = db.get(Document, document_id)
        if document is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Document {document_id} introuvable"
            )
        if not check(current_user, document):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Le rôle '{current_user.role.value}' ne permet pas l'action '{action}' sur ce document"
            )
        return document
    return dependency
