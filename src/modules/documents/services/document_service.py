import io
import logging
import os
from datetime import datetime
from typing import Optional

from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError
from sqlalchemy.orm import Session

from modules.documents.models.document import Document, DocumentStatus, DocumentType
from modules.documents.models.user import User
from modules.documents.repositories.document_repository import DocumentRepository
from modules.documents.services.errors import (
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    WorkflowValidationError,
)
from modules.documents.services.permission import can_view, has_view_permission

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "document_type")

class DocumentService:

    @staticmethod
    def create_document(
        session: Session,
        user_id: int,
        title: str,
        document_type: DocumentType,
        description: Optional[str] = None
    ) -> Document:
        """Creates a draft; its signature chain is chosen when it is submitted."""
        if not title or not title.strip():
            raise WorkflowValidationError("Le titre est requis")
        if session.get(User, user_id) is None:
            raise NotFoundError(f"Utilisateur {user_id} introuvable")

        document = Document(
            title=title.strip(),
            description=description,
            document_type=document_type,
            status=DocumentStatus.DRAFT,
            created_by=user_id,
            created_at=datetime.utcnow(),
        )
        document = DocumentRepository(session).save(document)
        logger.info("Document %s (%s) created by user %s", document.id, document_type.value, user_id)
        return document

    @staticmethod
    def get_document(session: Session, document_id: int) -> Document:
        document = session.get(Document, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} introuvable")
        return document

    @staticmethod
    def get_visible_document(session: Session, document_id: int, user: User) -> Document:
        document = DocumentService.get_document(session, document_id)
        if not can_view(user, document):
            raise UnauthorizedError("Vous n'avez pas accès à ce document")
        return document

    @staticmethod
    def get_documents_for_user(session: Session, user: User) -> list[Document]:
        """
        Documents the user created or takes part in, plus submitted documents of
        the types their role is allowed to consult.
        """
        repository = DocumentRepository(session)
        own = repository.list_for_participant(user.id)
        seen = {doc.id for doc in own}
        visible = [
            doc for doc in repository.list_all()
            if doc.id not in seen
            and doc.status != DocumentStatus.DRAFT
            and has_view_permission(user.role, doc.document_type)
        ]
        return sorted(own + visible, key=lambda d: (d.created_at or datetime.min, d.id), reverse=True)

    @staticmethod
    def update_document(session: Session, document_id: int, user_id: int, changes: dict) -> Document:
        document = DocumentService._get_editable(session, document_id, user_id)

        for field, value in changes.items():
            if field not in EDITABLE_FIELDS:
                raise WorkflowValidationError(f"Champ non modifiable : {field}")
            if field == "title" and (not value or not value.strip()):
                raise WorkflowValidationError("Le titre est requis")
            setattr(document, field, value)

        document.updated_at = datetime.utcnow()
        return DocumentRepository(session).save(document)

    @staticmethod
    def upload_content(
        session: Session,
        document_id: int,
        user_id: int,
        file_contents: bytes,
        filename: str,
        content_type: str,
        upload_dir: str,
        max_file_size: int = 10 * 1024 * 1024  # 10 MB
    ) -> Document:
        """
        Attaches the PDF content of a draft:
        - validates the file
        - stores it under the document's folder
        - records its location on the document
        """
        document = DocumentService._get_editable(session, document_id, user_id)
        DocumentService._validate_file(file_contents, filename, content_type, max_file_size)

        target_dir = os.path.join(upload_dir, f"document_{document.id}")
        os.makedirs(target_dir, exist_ok=True)
        file_path = os.path.join(target_dir, os.path.basename(filename))
        with open(file_path, "wb") as f:
            f.write(file_contents)

        document.file_path = file_path
        document.updated_at = datetime.utcnow()
        document = DocumentRepository(session).save(document)
        logger.info("Document %s content stored at %s (%d bytes)", document.id, file_path, len(file_contents))
        return document

    @staticmethod
    def delete_document(session: Session, document_id: int, user_id: int) -> None:
        """Deletes the document, its signature steps and its stored files."""
        document = DocumentService.get_document(session, document_id)
        if document.created_by != user_id:
            raise UnauthorizedError("Seul le créateur peut supprimer ce document")
        if document.status == DocumentStatus.PENDING_SIGNATURE:
            raise InvalidStateError("Un document en cours de signature ne peut pas être supprimé")

        paths = [p for p in (document.file_path, document.final_file_path) if p]
        DocumentRepository(session).delete(document)

        for path in paths:
            try:
                if os.path.exists(path):
                    os.remove(path)
            except OSError:
                logger.exception("Could not remove %s for deleted document %s", path, document_id)
        logger.info("Document %s deleted by user %s", document_id, user_id)

    @staticmethod
    def _get_editable(session: Session, document_id: int, user_id: int) -> Document:
        document = DocumentService.get_document(session, document_id)
        if document.created_by != user_id:
            raise UnauthorizedError("Seul le créateur peut modifier ce document")
        if document.status != DocumentStatus.DRAFT:
            raise InvalidStateError("Seuls les brouillons peuvent être modifiés")
        return document

    @staticmethod
    def _validate_file(file_contents: bytes, filename: str, content_type: str, max_file_size: int):
        """Validates an uploaded PDF"""

        if content_type != "application/pdf":
            raise WorkflowValidationError("Le fichier doit être un PDF")

        if not filename or not filename.lower().endswith(".pdf"):
            raise WorkflowValidationError("L'extension doit être .pdf")

        if not file_contents:
            raise WorkflowValidationError("Le fichier est vide")

        if len(file_contents) > max_file_size:
            raise WorkflowValidationError(f"La taille maximale est de {max_file_size // (1024*1024)} Mo")

        try:
            reader = PdfReader(io.BytesIO(file_contents))
            _ = reader.pages
        except (PdfReadError, ValueError) as e:
            raise WorkflowValidationError("PDF invalide ou endommagé") from e
