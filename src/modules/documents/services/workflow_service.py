"""
Sequential signature workflow.

A document moves ``draft -> pending_signature -> completed | rejected``. On
submission the workflow template for its type is turned into signature steps
bound to concrete users; each step must be signed in order by its bound signer.
Every transition is applied with conditional updates so a caller acting on a
stale view of the document fails instead of advancing the chain twice.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from typing import Iterable, List, Optional, Protocol, Set, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from modules.documents.models.document import Document, DocumentStatus, DocumentType
from modules.documents.models.signature import SignatureStep, SignatureState
from modules.documents.models.user import UserRole
from modules.documents.repositories.document_repository import DocumentRepository
from modules.documents.services.errors import (
    DependencyFailureError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    WorkflowError,
    WorkflowValidationError,
)
from modules.documents.services.finalization_service import Attestation, FinalizationService
from modules.documents.services.permission import has_view_permission
from modules.documents.services.role_directory import RoleDirectory
from modules.documents.services.workflow_templates import WorkflowTemplates, DEFAULT_TEMPLATES
from modules.notifications.models.notification import NotificationKind
from modules.notifications.services.notification_service import (
    NotificationTemplate,
    SignatureRequiredNotification,
    DocumentRejectedNotification,
    DocumentCompletedNotification,
)

logger = logging.getLogger(__name__)

DEFAULT_ATTESTATION = "OK SIGNÉ"
DEFAULT_DOWNLOAD_ROLES = (
    UserRole.SAF,
    UserRole.APPARITEUR,
    UserRole.RECEPTIONNISTE,
    UserRole.BIBLIOTHECAIRE,
)
MISSING_SIGNER_POLICIES = ("omit", "fail")
# Width of the signature_steps.comment column
MAX_COMMENT_LENGTH = 1024


class Notifier(Protocol):
    def notify(self, user_id: int, kind: NotificationKind, document_id: Optional[int], message: str): ...


class WorkflowStatus(PyEnum):
    NOT_STARTED = "not_started"
    PENDING = "pending"
    AWAITING_FINALIZATION = "awaiting_finalization"
    COMPLETED = "completed"
    REJECTED = "rejected"


# Persisted document status each projected workflow status must agree with
EXPECTED_DOCUMENT_STATUS = {
    WorkflowStatus.NOT_STARTED: DocumentStatus.DRAFT,
    WorkflowStatus.PENDING: DocumentStatus.PENDING_SIGNATURE,
    WorkflowStatus.AWAITING_FINALIZATION: DocumentStatus.PENDING_SIGNATURE,
    WorkflowStatus.COMPLETED: DocumentStatus.COMPLETED,
    WorkflowStatus.REJECTED: DocumentStatus.REJECTED,
}


@dataclass(frozen=True)
class PlannedStep:
    order: int
    role: UserRole
    signer_id: int


@dataclass(frozen=True)
class StepView:
    order: int
    role: UserRole
    signer_id: int
    signer_name: str
    state: SignatureState
    acted_at: Optional[datetime]
    comment: Optional[str]


@dataclass(frozen=True)
class WorkflowView:
    document_id: int
    document_status: DocumentStatus
    current_signer_id: Optional[int]
    steps: List[StepView]
    current_step: int
    status: WorkflowStatus


def active_step(steps: Iterable[SignatureStep]) -> Optional[SignatureStep]:
    """Lowest-order pending step, or None when no step is pending."""
    for step in sorted(steps, key=lambda s: s.order):
        state = step.state
        if state == SignatureState.PENDING:
            return step
        elif state in (SignatureState.SIGNED, SignatureState.REJECTED):
            continue
        else:
            raise InvalidStateError(f"Unhandled signature state {state!r}")
    return None


def derive_workflow_status(steps: List[Union[SignatureStep, StepView]], document_status: DocumentStatus) -> WorkflowStatus:
    if not steps:
        return WorkflowStatus.NOT_STARTED
    states = [step.state for step in steps]
    if SignatureState.REJECTED in states:
        return WorkflowStatus.REJECTED
    if all(state == SignatureState.SIGNED for state in states):
        if document_status == DocumentStatus.COMPLETED:
            return WorkflowStatus.COMPLETED
        return WorkflowStatus.AWAITING_FINALIZATION
    return WorkflowStatus.PENDING


def projection_matches(view: WorkflowView) -> bool:
    """True when the step projection agrees with the persisted document row."""
    if EXPECTED_DOCUMENT_STATUS[view.status] != view.document_status:
        return False
    pending = [step for step in view.steps if step.state == SignatureState.PENDING]
    if view.status == WorkflowStatus.PENDING:
        return view.current_signer_id == pending[0].signer_id
    return view.current_signer_id is None


class WorkflowService:

    def __init__(
        self,
        db_session: Session,
        finalization_service: FinalizationService,
        notifier: Notifier,
        templates: Optional[WorkflowTemplates] = None,
        role_directory: Optional[RoleDirectory] = None,
        repository: Optional[DocumentRepository] = None,
        default_attestation: str = DEFAULT_ATTESTATION,
        download_authorized_roles: Iterable[Union[UserRole, str]] = DEFAULT_DOWNLOAD_ROLES,
        missing_signer_policy: str = "omit",
    ):
        if missing_signer_policy not in MISSING_SIGNER_POLICIES:
            raise ValueError(f"Unknown missing signer policy: {missing_signer_policy}")
        self.db = db_session
        self.finalization_service = finalization_service
        self.notifier = notifier
        self.templates = templates or WorkflowTemplates(DEFAULT_TEMPLATES)
        self.role_directory = role_directory or RoleDirectory(db_session)
        self.repository = repository or DocumentRepository(db_session)
        self.default_attestation = default_attestation
        self.download_authorized_roles = tuple(
            role if isinstance(role, UserRole) else UserRole(role)
            for role in download_authorized_roles
        )
        self.missing_signer_policy = missing_signer_policy

    # ------------------------------------------------------------------
    # Chain construction
    # ------------------------------------------------------------------
    def build_signature_chain(
        self,
        document_type: DocumentType,
        creator_role: UserRole,
        document_id: Optional[int] = None
    ) -> List[PlannedStep]:
        """
        Resolve the template for ``document_type`` into ordered steps bound to
        users. Steps whose role has no active holder are left out and order
        numbers are only given to the steps that are kept.
        """
        template = self.templates.for_type(document_type)
        if not template:
            logger.warning("Document %s: no workflow template for type %s, chain is empty",
                           document_id, document_type.value)
            return []

        chain: List[PlannedStep] = []
        for position, template_step in enumerate(template, start=1):
            role = template_step.effective_role(creator_role)
            signer_id = self.role_directory.resolve_signer(role)
            if signer_id is not None:
                chain.append(PlannedStep(order=len(chain) + 1, role=role, signer_id=signer_id))
                continue

            if template_step.optional:
                logger.warning("Document %s: optional step %d (%s) omitted, no active user holds the role",
                               document_id, position, role.value)
                continue
            if self.missing_signer_policy == "fail":
                raise WorkflowValidationError(
                    f"Aucun utilisateur actif ne détient le rôle requis '{role.value}'"
                )
            logger.warning("Document %s: required step %d (%s) omitted, no active user holds the role",
                           document_id, position, role.value)
        return chain

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def initialize_workflow(self, document_id: int, acting_user_id: int) -> List[SignatureStep]:
        """
        Submit a draft for signature. Returns the created steps; an empty list
        means no step could be bound and the document stays in draft.
        """
        document = self._get_document(document_id)
        if document.created_by != acting_user_id:
            raise UnauthorizedError("Seul le créateur peut soumettre le document à signature")
        self._require_draft(document)
        self._validate_for_submission(document)

        creator = self.role_directory.get_user(document.created_by)
        if creator is None:
            raise NotFoundError(f"Créateur {document.created_by} introuvable")

        chain = self.build_signature_chain(document.document_type, creator.role, document.id)
        if not chain:
            logger.warning("Document %s: no signature step could be created, it stays in draft", document.id)
            return []

        first = chain[0]
        title = document.title
        with self._atomic():
            swapped = self.repository.compare_and_set(
                document.id, DocumentStatus.DRAFT, None, document.version,
                status=DocumentStatus.PENDING_SIGNATURE,
                current_signer_id=first.signer_id,
            )
            if not swapped:
                raise InvalidStateError("Le document a été modifié par une autre opération")
            self.repository.add_steps([
                SignatureStep(
                    document_id=document_id,
                    order=planned.order,
                    role=planned.role,
                    signer_id=planned.signer_id,
                    state=SignatureState.PENDING,
                )
                for planned in chain
            ])

        logger.info("Document %s submitted for signature: %s",
                    document_id, [(p.order, p.role.value, p.signer_id) for p in chain])
        self._send(SignatureRequiredNotification(first.signer_id, document_id, title))
        return self.repository.get_steps(document_id)

    def sign(self, document_id: int, acting_user_id: int, comment: Optional[str] = None) -> Document:
        document = self._get_document(document_id)
        steps = self.repository.get_steps(document_id)
        current = self._require_turn(document, steps, acting_user_id)

        attestation = comment.strip() if comment and comment.strip() else self.default_attestation
        self._check_comment_length(attestation, "commentaire")
        following = self._next_pending(steps, current)
        title = document.title
        now = datetime.utcnow()

        with self._atomic():
            if not self.repository.transition_step(
                current.id, SignatureState.PENDING, SignatureState.SIGNED, attestation, now
            ):
                raise InvalidStateError("Cette étape de signature a déjà été traitée")
            if not self.repository.compare_and_set(
                document_id, DocumentStatus.PENDING_SIGNATURE, acting_user_id, document.version,
                current_signer_id=following.signer_id if following else None,
            ):
                raise InvalidStateError("Le document a été modifié par une autre opération")

        logger.info("Document %s: step %d signed by user %s", document_id, current.order, acting_user_id)

        if following is not None:
            self._send(SignatureRequiredNotification(following.signer_id, document_id, title))
            return self._get_document(document_id)

        logger.info("Document %s: all steps signed, finalizing", document_id)
        return self._finalize(document_id)

    def reject(self, document_id: int, acting_user_id: int, reason: str) -> Document:
        document = self._get_document(document_id)
        steps = self.repository.get_steps(document_id)
        current = self._require_turn(document, steps, acting_user_id)

        if not reason or not reason.strip():
            raise WorkflowValidationError("Un motif de rejet est requis")
        reason = reason.strip()
        self._check_comment_length(reason, "motif de rejet")
        creator_id, title = document.created_by, document.title
        now = datetime.utcnow()

        with self._atomic():
            if not self.repository.transition_step(
                current.id, SignatureState.PENDING, SignatureState.REJECTED, reason, now
            ):
                raise InvalidStateError("Cette étape de signature a déjà été traitée")
            if not self.repository.compare_and_set(
                document_id, DocumentStatus.PENDING_SIGNATURE, acting_user_id, document.version,
                status=DocumentStatus.REJECTED,
                current_signer_id=None,
                rejected_at=now,
            ):
                raise InvalidStateError("Le document a été modifié par une autre opération")

        logger.info("Document %s: step %d rejected by user %s", document_id, current.order, acting_user_id)
        self._send(DocumentRejectedNotification(creator_id, document_id, title, reason))
        return self._get_document(document_id)

    def retry_finalization(self, document_id: int, acting_user_id: int) -> Document:
        """
        Finalize a document whose steps are all signed but whose archive could
        not be produced. Calling it on a completed document is a no-op.
        """
        document = self._get_document(document_id)
        steps = self.repository.get_steps(document_id)
        participants = {document.created_by} | {step.signer_id for step in steps}
        if acting_user_id not in participants:
            raise UnauthorizedError("Seuls les participants du circuit peuvent relancer la finalisation")

        status = document.status
        if status == DocumentStatus.COMPLETED:
            logger.info("Document %s already completed, finalization retry ignored", document_id)
            return document
        elif status in (DocumentStatus.DRAFT, DocumentStatus.REJECTED):
            raise InvalidStateError(f"Impossible de finaliser un document à l'état '{status.value}'")
        elif status == DocumentStatus.PENDING_SIGNATURE:
            if not steps or any(step.state != SignatureState.SIGNED for step in steps):
                raise InvalidStateError("Des signatures sont encore en attente")
            return self._finalize(document_id)
        else:
            raise InvalidStateError(f"Unhandled document status {status!r}")

    def get_workflow(self, document_id: int) -> WorkflowView:
        document = self._get_document(document_id)
        steps = self.repository.get_steps(document_id)
        views = [
            StepView(
                order=step.order,
                role=step.role,
                signer_id=step.signer_id,
                signer_name=step.signer.display_name if step.signer else "",
                state=step.state,
                acted_at=step.acted_at,
                comment=step.comment,
            )
            for step in steps
        ]
        current_step = next(
            (position for position, step in enumerate(views, start=1) if step.state == SignatureState.PENDING),
            len(views),
        )
        return WorkflowView(
            document_id=document.id,
            document_status=document.status,
            current_signer_id=document.current_signer_id,
            steps=views,
            current_step=current_step,
            status=derive_workflow_status(views, document.status),
        )

    def can_user_sign(self, document_id: int, user_id: int) -> bool:
        document = self.repository.get(document_id)
        if document is None or document.status != DocumentStatus.PENDING_SIGNATURE:
            return False
        current = active_step(self.repository.get_steps(document_id))
        return (
            current is not None
            and current.signer_id == user_id
            and document.current_signer_id == user_id
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _finalize(self, document_id: int) -> Document:
        document = self._get_document(document_id)
        steps = self.repository.get_steps(document_id)
        attestations = [self._attestation(step) for step in steps]

        try:
            location = self.finalization_service.finalize(document, attestations)
        except WorkflowError:
            logger.error("Document %s: finalization failed, all steps signed and awaiting retry", document_id)
            raise
        except Exception as e:
            logger.exception("Document %s: finalization failed, all steps signed and awaiting retry", document_id)
            raise DependencyFailureError(f"Finalisation impossible pour le document {document_id}: {e}") from e

        creator_id, title = document.created_by, document.title
        document_type = document.document_type
        signer_ids = {step.signer_id for step in steps}
        now = datetime.utcnow()
        try:
            swapped = self.repository.compare_and_set(
                document_id, DocumentStatus.PENDING_SIGNATURE, None, document.version,
                status=DocumentStatus.COMPLETED,
                final_file_path=location,
                completed_at=now,
            )
            if swapped:
                self.db.commit()
            else:
                self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Document %s: could not record completion", document_id)
            raise DependencyFailureError(f"Document store unavailable: {e}") from e

        if not swapped:
            current = self._get_document(document_id)
            if current.status == DocumentStatus.COMPLETED:
                logger.info("Document %s was completed by a concurrent finalization", document_id)
                return current
            raise InvalidStateError("Le document a été modifié pendant la finalisation")

        logger.info("Document %s completed, archived at %s", document_id, location)
        for user_id in self._completion_recipients(creator_id, document_type, signer_ids):
            self._send(DocumentCompletedNotification(user_id, document_id, title))
        return self._get_document(document_id)

    def _completion_recipients(self, creator_id: int, document_type: DocumentType, signer_ids: Set[int]) -> List[int]:
        """Creator, then holders of download-authorized roles who may download this document."""
        recipients = [creator_id]
        for role in self.download_authorized_roles:
            may_download_type = has_view_permission(role, document_type)
            try:
                users = self.role_directory.resolve_active_users_by_role(role)
            except DependencyFailureError:
                logger.exception("Could not resolve role %s for completion notifications", role.value)
                continue
            recipients.extend(
                user_id for user_id in users
                if user_id not in recipients and (may_download_type or user_id in signer_ids)
            )
        return recipients

    def _attestation(self, step: SignatureStep) -> Attestation:
        return Attestation(
            signer_id=step.signer_id,
            signer_name=step.signer.display_name if step.signer else "",
            signer_role=step.role.value,
            text=step.comment or self.default_attestation,
            signed_at=step.acted_at,
        )

    def _get_document(self, document_id: int) -> Document:
        document = self.repository.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} introuvable")
        return document

    def _require_draft(self, document: Document) -> None:
        status = document.status
        if status == DocumentStatus.DRAFT:
            return
        elif status in (DocumentStatus.PENDING_SIGNATURE, DocumentStatus.COMPLETED, DocumentStatus.REJECTED):
            raise InvalidStateError(f"Le document est déjà à l'état '{status.value}'")
        else:
            raise InvalidStateError(f"Unhandled document status {status!r}")

    def _require_turn(self, document: Document, steps: List[SignatureStep], acting_user_id: int) -> SignatureStep:
        status = document.status
        if status == DocumentStatus.PENDING_SIGNATURE:
            pass
        elif status == DocumentStatus.DRAFT:
            raise InvalidStateError("Le document n'a pas été soumis à signature")
        elif status in (DocumentStatus.COMPLETED, DocumentStatus.REJECTED):
            raise InvalidStateError(f"Le document est à l'état terminal '{status.value}'")
        else:
            raise InvalidStateError(f"Unhandled document status {status!r}")

        current = active_step(steps)
        if current is None:
            raise InvalidStateError("Aucune étape de signature active pour ce document")
        if any(step.state != SignatureState.SIGNED for step in steps if step.order < current.order):
            raise InvalidStateError("Circuit de signature incohérent")
        if current.signer_id != acting_user_id:
            raise UnauthorizedError("Ce n'est pas votre tour de signer ce document")
        if document.current_signer_id != current.signer_id:
            raise InvalidStateError("Le signataire courant ne correspond pas à l'étape active")
        return current

    @staticmethod
    def _next_pending(steps: List[SignatureStep], current: SignatureStep) -> Optional[SignatureStep]:
        return active_step(step for step in steps if step.order > current.order)

    def _validate_for_submission(self, document: Document) -> None:
        missing = []
        if not document.title or not document.title.strip():
            missing.append("title")
        if document.document_type is None:
            missing.append("document_type")
        if not document.file_path:
            missing.append("content")
        if missing:
            raise WorkflowValidationError(f"Champs requis manquants : {', '.join(missing)}")

    def _send(self, template: NotificationTemplate) -> None:
        try:
            self.notifier.notify(**template.to_dict())
        except Exception:
            logger.exception("Notification %s for document %s could not be delivered",
                             template.kind.value, template.document_id)

    @contextmanager
    def _atomic(self):
        try:
            yield
            self.db.commit()
        except WorkflowError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Workflow transaction failed")
            raise DependencyFailureError(f"Document store unavailable: {e}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def _check_comment_length(text: str, label: str) -> None:
        if len(text) > MAX_COMMENT_LENGTH:
            raise WorkflowValidationError(
                f"Le {label} dépasse {MAX_COMMENT_LENGTH} caractères ({len(text)})"
            )
