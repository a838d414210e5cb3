from datetime import datetime
from typing import List, Optional

from sqlalchemy import update, or_
from sqlalchemy.orm import Session

from modules.documents.models.document import Document, DocumentStatus
from modules.documents.models.signature import SignatureStep, SignatureState


class DocumentRepository:
    """
    Persistence for the Document + SignatureStep aggregate.

    ``compare_and_set`` and ``transition_step`` only stage their UPDATE in the
    current transaction; the caller commits or rolls back.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def get(self, document_id: int) -> Optional[Document]:
        return self.db.get(Document, document_id)

    def save(self, document: Document) -> Document:
        self.db.add(document)
        self.db.commit()
        self.db.refresh(document)
        return document

    def delete(self, document: Document) -> None:
        self.db.delete(document)
        self.db.commit()

    def list_all(self) -> List[Document]:
        return self.db.query(Document).order_by(Document.created_at.desc(), Document.id.desc()).all()

    def list_for_participant(self, user_id: int) -> List[Document]:
        """Documents created by the user or in which the user holds a signature step"""
        step_doc_ids = self.db.query(SignatureStep.document_id).filter(SignatureStep.signer_id == user_id)
        return (
            self.db.query(Document)
            .filter(or_(Document.created_by == user_id, Document.id.in_(step_doc_ids)))
            .order_by(Document.created_at.desc(), Document.id.desc())
            .all()
        )

    def list_awaiting_signer(self, user_id: int) -> List[Document]:
        return (
            self.db.query(Document)
            .filter(
                Document.status == DocumentStatus.PENDING_SIGNATURE,
                Document.current_signer_id == user_id,
            )
            .order_by(Document.updated_at.asc())
            .all()
        )

    def find_pending_since(self, cutoff: datetime) -> List[Document]:
        return (
            self.db.query(Document)
            .filter(
                Document.status == DocumentStatus.PENDING_SIGNATURE,
                Document.current_signer_id.isnot(None),
                Document.updated_at <= cutoff,
            )
            .all()
        )

    def get_steps(self, document_id: int) -> List[SignatureStep]:
        return (
            self.db.query(SignatureStep)
            .filter(SignatureStep.document_id == document_id)
            .order_by(SignatureStep.order.asc())
            .all()
        )

    def add_steps(self, steps: List[SignatureStep]) -> None:
        self.db.add_all(steps)
        self.db.flush()

    def compare_and_set(
        self,
        document_id: int,
        expected_status: DocumentStatus,
        expected_signer_id: Optional[int],
        expected_version: int,
        **values
    ) -> bool:
        """
        Update the document iff status, current signer and version still match.
        Returns False when another writer got there first.
        """
        criteria = [
            Document.id == document_id,
            Document.status == expected_status,
            Document.version == expected_version,
        ]
        if expected_signer_id is None:
            criteria.append(Document.current_signer_id.is_(None))
        else:
            criteria.append(Document.current_signer_id == expected_signer_id)

        values.setdefault("updated_at", datetime.utcnow())
        values["version"] = expected_version + 1
        result = self.db.execute(
            update(Document)
            .where(*criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def transition_step(
        self,
        step_id: int,
        expected_state: SignatureState,
        new_state: SignatureState,
        comment: Optional[str],
        acted_at: datetime
    ) -> bool:
        result = self.db.execute(
            update(SignatureStep)
            .where(SignatureStep.id == step_id, SignatureStep.state == expected_state)
            .values(state=new_state, comment=comment, acted_at=acted_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
