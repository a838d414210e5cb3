import logging

import pytest
from sqlalchemy.exc import OperationalError

from modules.documents.models.document import Document, DocumentStatus, DocumentType
from modules.documents.models.signature import SignatureStep, SignatureState
from modules.documents.models.user import User, UserRole
from modules.documents.repositories.document_repository import DocumentRepository
from modules.documents.services.errors import (
    DependencyFailureError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
    WorkflowValidationError,
)
from modules.documents.services.permission import can_download
from modules.documents.services.role_directory import RoleDirectory
from modules.documents.services.workflow_service import (
    MAX_COMMENT_LENGTH,
    WorkflowService,
    WorkflowStatus,
    projection_matches,
)
from modules.notifications.models.notification import NotificationKind

from conftest import FakeFinalizer, RecordingNotifier


@pytest.fixture
def transcript_chain(make_user):
    """saf creator plus one holder for every other releve_notes role"""
    return {
        "saf": make_user(UserRole.SAF),
        "libraire": make_user(UserRole.LIBRAIRE),
        "comptable": make_user(UserRole.COMPTABLE),
        "bibliothecaire": make_user(UserRole.BIBLIOTHECAIRE),
        "doyen": make_user(UserRole.DOYEN),
    }


@pytest.fixture
def honoraria_users(make_user):
    return {
        "creator": make_user(UserRole.APPARITEUR),
        "doyen": make_user(UserRole.DOYEN),
        "sgac": make_user(UserRole.SGAC),
    }


def snapshot_steps(session, document_id):
    session.expire_all()
    return [
        (s.order, s.signer_id, s.state, s.comment, s.acted_at)
        for s in DocumentRepository(session).get_steps(document_id)
    ]


# --- Scenario A: releve_notes happy path ---

def test_releve_notes_chain_substitutes_creator_role_and_completes(
    session, transcript_chain, make_document, workflow, finalizer, notifier, assert_chain_consistent
):
    users = transcript_chain
    doc = make_document(users["saf"], DocumentType.RELEVE_NOTES)

    steps = workflow.initialize_workflow(doc.id, users["saf"].id)

    expected = [
        (1, UserRole.SAF, users["saf"].id),
        (2, UserRole.LIBRAIRE, users["libraire"].id),
        (3, UserRole.COMPTABLE, users["comptable"].id),
        (4, UserRole.BIBLIOTHECAIRE, users["bibliothecaire"].id),
        (5, UserRole.DOYEN, users["doyen"].id),
    ]
    assert [(s.order, s.role, s.signer_id) for s in steps] == expected
    assert all(s.state == SignatureState.PENDING for s in steps)
    assert doc.status == DocumentStatus.PENDING_SIGNATURE
    assert doc.current_signer_id == users["saf"].id

    order = ["saf", "libraire", "comptable", "bibliothecaire", "doyen"]
    for i, name in enumerate(order):
        result = workflow.sign(doc.id, users[name].id)
        assert_chain_consistent(doc.id)
        if i < len(order) - 1:
            assert result.status == DocumentStatus.PENDING_SIGNATURE
            assert result.current_signer_id == users[order[i + 1]].id
            assert finalizer.calls == []

    doc, steps = assert_chain_consistent(doc.id)
    assert doc.status == DocumentStatus.COMPLETED
    assert doc.current_signer_id is None
    assert doc.final_file_path == f"archive/document_{doc.id}_final.pdf"
    assert doc.completed_at is not None
    assert all(s.state == SignatureState.SIGNED for s in steps)

    assert len(finalizer.calls) == 1
    _, attestations = finalizer.calls[0]
    assert [a.signer_id for a in attestations] == [users[n].id for n in order]
    assert [a.signer_role for a in attestations] == [r.value for _, r, _ in expected]
    assert all(a.text == "OK SIGNÉ" for a in attestations)
    assert all(a.signed_at is not None for a in attestations)

    assert notifier.recipients(NotificationKind.SIGNATURE_REQUIRED) == [users[n].id for n in order]
    # creator first, then download-authorized roles without duplicates
    assert notifier.recipients(NotificationKind.DOCUMENT_COMPLETED) == [
        users["saf"].id, users["bibliothecaire"].id
    ]


def test_completion_notifies_only_roles_that_may_download(
    session, honoraria_users, make_user, make_document, workflow, notifier
):
    users = honoraria_users
    saf = make_user(UserRole.SAF)
    receptionniste = make_user(UserRole.RECEPTIONNISTE)
    bibliothecaire = make_user(UserRole.BIBLIOTHECAIRE)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, users["doyen"].id)
    workflow.sign(doc.id, users["sgac"].id)

    recipients = notifier.recipients(NotificationKind.DOCUMENT_COMPLETED)

    assert recipients == [users["creator"].id, saf.id]
    completed = session.get(Document, doc.id)
    for user_id in recipients:
        assert can_download(session.get(User, user_id), completed)
    for outsider in (receptionniste, bibliothecaire):
        assert not can_download(outsider, completed)


def test_appariteur_creator_is_first_signer_of_transcript(session, make_user, make_document, workflow):
    appariteur = make_user(UserRole.APPARITEUR)
    saf = make_user(UserRole.SAF)
    make_user(UserRole.LIBRAIRE)
    doc = make_document(appariteur, DocumentType.RELEVE_NOTES)

    steps = workflow.initialize_workflow(doc.id, appariteur.id)

    assert steps[0].role == UserRole.APPARITEUR
    assert steps[0].signer_id == appariteur.id
    assert saf.id not in [s.signer_id for s in steps]


# --- Scenario B: optional step omitted ---

def test_honoraria_without_cp_skips_optional_step(session, honoraria_users, make_document, workflow, caplog):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES, title="Honoraires jury")
    caplog.set_level(logging.WARNING)

    steps = workflow.initialize_workflow(doc.id, users["creator"].id)

    assert [(s.order, s.role, s.signer_id) for s in steps] == [
        (1, UserRole.DOYEN, users["doyen"].id),
        (2, UserRole.SGAC, users["sgac"].id),
    ]
    assert doc.current_signer_id == users["doyen"].id
    assert "optional step 1 (cp) omitted" in caplog.text


def test_honoraria_with_active_cp_keeps_optional_step(session, honoraria_users, make_user, make_document, workflow):
    cp = make_user(UserRole.CP)
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)

    steps = workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    assert [s.role for s in steps] == [UserRole.CP, UserRole.DOYEN, UserRole.SGAC]
    assert doc.current_signer_id == cp.id


def test_inactive_cp_counts_as_missing(session, honoraria_users, make_user, make_document, workflow):
    make_user(UserRole.CP, active=False)
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)

    steps = workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    assert [s.role for s in steps] == [UserRole.DOYEN, UserRole.SGAC]


# --- Scenario C: rejection ---

def test_rejection_is_terminal_and_notifies_creator(
    session, honoraria_users, make_user, make_document, workflow, notifier, assert_chain_consistent
):
    users = honoraria_users
    cp = make_user(UserRole.CP)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES, title="Honoraires mars")
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, cp.id)

    result = workflow.reject(doc.id, users["doyen"].id, "out of budget")

    assert result.status == DocumentStatus.REJECTED
    assert result.current_signer_id is None
    assert result.rejected_at is not None
    doc, steps = assert_chain_consistent(doc.id)
    assert [s.state for s in steps] == [SignatureState.SIGNED, SignatureState.REJECTED, SignatureState.PENDING]
    assert steps[1].comment == "out of budget"
    assert steps[1].acted_at is not None
    assert steps[2].acted_at is None

    rejected = [e for e in notifier.events if e[1] == NotificationKind.DOCUMENT_REJECTED]
    assert len(rejected) == 1
    user_id, _, document_id, message = rejected[0]
    assert user_id == users["creator"].id
    assert document_id == doc.id
    assert "out of budget" in message

    # the step after the rejected one can never be reached
    with pytest.raises(InvalidStateError):
        workflow.sign(doc.id, users["sgac"].id)


def test_reject_requires_reason(session, honoraria_users, make_document, workflow):
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    with pytest.raises(WorkflowValidationError):
        workflow.reject(doc.id, honoraria_users["doyen"].id, "   ")

    assert doc.status == DocumentStatus.PENDING_SIGNATURE


def test_blank_reason_does_not_hide_state_or_turn_errors(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)

    with pytest.raises(UnauthorizedError):
        workflow.reject(doc.id, users["sgac"].id, "")

    workflow.sign(doc.id, users["doyen"].id)
    workflow.sign(doc.id, users["sgac"].id)
    for reason in ("", "   ", None):
        with pytest.raises(InvalidStateError):
            workflow.reject(doc.id, users["sgac"].id, reason)


def test_overlong_comment_or_reason_is_refused(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    before = snapshot_steps(session, doc.id)
    too_long = "x" * (MAX_COMMENT_LENGTH + 1)

    with pytest.raises(WorkflowValidationError):
        workflow.sign(doc.id, users["doyen"].id, too_long)
    with pytest.raises(WorkflowValidationError):
        workflow.reject(doc.id, users["doyen"].id, too_long)

    assert snapshot_steps(session, doc.id) == before
    assert session.get(Document, doc.id).current_signer_id == users["doyen"].id

    # surrounding whitespace is stripped before the length check
    workflow.sign(doc.id, users["doyen"].id, "  " + "x" * MAX_COMMENT_LENGTH + "  ")
    steps = DocumentRepository(session).get_steps(doc.id)
    assert len(steps[0].comment) == MAX_COMMENT_LENGTH


# --- Scenario D: unauthorized sign ---

def test_sign_out_of_turn_is_unauthorized_and_changes_nothing(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    before = snapshot_steps(session, doc.id)
    version = session.get(Document, doc.id).version

    with pytest.raises(UnauthorizedError):
        workflow.sign(doc.id, users["sgac"].id)
    with pytest.raises(UnauthorizedError):
        workflow.reject(doc.id, users["creator"].id, "pas d'accord")

    assert snapshot_steps(session, doc.id) == before
    refreshed = session.get(Document, doc.id)
    assert refreshed.current_signer_id == users["doyen"].id
    assert refreshed.version == version


# --- Scenario E: finalization failure then retry ---

def test_finalization_failure_leaves_document_awaiting_retry(
    session, honoraria_users, make_document, notifier, assert_chain_consistent
):
    users = honoraria_users
    finalizer = FakeFinalizer(failures=1)
    workflow = WorkflowService(session, finalization_service=finalizer, notifier=notifier)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, users["doyen"].id)

    with pytest.raises(DependencyFailureError):
        workflow.sign(doc.id, users["sgac"].id)

    doc, steps = assert_chain_consistent(doc.id)
    assert doc.status == DocumentStatus.PENDING_SIGNATURE
    assert doc.current_signer_id is None
    assert all(s.state == SignatureState.SIGNED for s in steps)
    view = workflow.get_workflow(doc.id)
    assert view.status == WorkflowStatus.AWAITING_FINALIZATION
    assert view.current_step == 2
    assert projection_matches(view)

    # nobody can sign anything while awaiting finalization
    with pytest.raises(InvalidStateError):
        workflow.sign(doc.id, users["sgac"].id)

    completed = workflow.retry_finalization(doc.id, users["creator"].id)
    assert completed.status == DocumentStatus.COMPLETED
    assert completed.final_file_path == f"archive/document_{doc.id}_final.pdf"
    version = completed.version

    again = workflow.retry_finalization(doc.id, users["sgac"].id)
    assert again.status == DocumentStatus.COMPLETED
    assert again.version == version
    # one failed call, one successful call, none for the second retry
    assert len(finalizer.calls) == 2
    assert notifier.recipients(NotificationKind.DOCUMENT_COMPLETED) == [users["creator"].id]


def test_finalization_timeout_is_reported_as_retryable(session, honoraria_users, make_document, notifier):
    class TimingOutFinalizer:
        def finalize(self, document, attestations):
            raise TimeoutError("archive service timed out")

    users = honoraria_users
    workflow = WorkflowService(session, finalization_service=TimingOutFinalizer(), notifier=notifier)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, users["doyen"].id)

    with pytest.raises(DependencyFailureError) as exc_info:
        workflow.sign(doc.id, users["sgac"].id)

    assert exc_info.value.retryable
    assert session.get(Document, doc.id).status == DocumentStatus.PENDING_SIGNATURE


def test_unexpected_finalizer_error_is_reported_as_retryable(
    session, honoraria_users, make_document, notifier, assert_chain_consistent
):
    class BrokenArchive:
        def __init__(self):
            self.calls = 0

        def finalize(self, document, attestations):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("archive service returned HTTP 502")
            return f"archive/document_{document.id}_final.pdf"

    users = honoraria_users
    archive = BrokenArchive()
    workflow = WorkflowService(session, finalization_service=archive, notifier=notifier)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, users["doyen"].id)

    with pytest.raises(DependencyFailureError) as exc_info:
        workflow.sign(doc.id, users["sgac"].id)

    assert exc_info.value.retryable
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    doc, steps = assert_chain_consistent(doc.id)
    assert doc.status == DocumentStatus.PENDING_SIGNATURE
    assert all(s.state == SignatureState.SIGNED for s in steps)
    assert workflow.get_workflow(doc.id).status == WorkflowStatus.AWAITING_FINALIZATION

    completed = workflow.retry_finalization(doc.id, users["creator"].id)
    assert completed.status == DocumentStatus.COMPLETED


def test_retry_finalization_rejects_unfinished_or_foreign_calls(
    session, honoraria_users, make_user, make_document, workflow
):
    users = honoraria_users
    outsider = make_user(UserRole.RECTEUR)
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)

    with pytest.raises(UnauthorizedError):
        workflow.retry_finalization(doc.id, outsider.id)
    with pytest.raises(InvalidStateError):
        workflow.retry_finalization(doc.id, users["creator"].id)

    workflow.reject(doc.id, users["doyen"].id, "incomplet")
    with pytest.raises(InvalidStateError):
        workflow.retry_finalization(doc.id, users["creator"].id)


# --- Terminal immutability ---

def test_completed_document_cannot_be_signed_or_rejected_again(
    session, honoraria_users, make_document, workflow
):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.sign(doc.id, users["doyen"].id)
    workflow.sign(doc.id, users["sgac"].id)
    before = snapshot_steps(session, doc.id)

    for user in (users["doyen"], users["sgac"]):
        with pytest.raises(InvalidStateError):
            workflow.sign(doc.id, user.id)
        with pytest.raises(InvalidStateError):
            workflow.reject(doc.id, user.id, "trop tard")

    assert snapshot_steps(session, doc.id) == before
    assert session.get(Document, doc.id).status == DocumentStatus.COMPLETED


def test_draft_cannot_be_signed(session, honoraria_users, make_document, workflow):
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)

    with pytest.raises(InvalidStateError):
        workflow.sign(doc.id, honoraria_users["doyen"].id)


# --- Concurrency ---

def test_unexpected_error_mid_transition_rolls_back(
    session, honoraria_users, make_document, workflow, finalizer, notifier, assert_chain_consistent
):
    class FailingRepository(DocumentRepository):
        def compare_and_set(self, *args, **kwargs):
            raise RuntimeError("connection reset during update")

    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    broken = WorkflowService(
        session, finalization_service=finalizer, notifier=notifier, repository=FailingRepository(session)
    )

    with pytest.raises(RuntimeError):
        broken.sign(doc.id, users["doyen"].id, "Approuvé")

    # the step update issued before the failure is not left pending in the session
    doc, steps = assert_chain_consistent(doc.id)
    assert [s.state for s in steps] == [SignatureState.PENDING, SignatureState.PENDING]
    assert steps[0].comment is None
    assert doc.current_signer_id == users["doyen"].id
    assert doc.version == 1

    result = workflow.sign(doc.id, users["doyen"].id)
    assert result.current_signer_id == users["sgac"].id
    assert notifier.recipients(NotificationKind.SIGNATURE_REQUIRED) == [users["doyen"].id, users["sgac"].id]


def test_second_sign_by_same_user_fails(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)

    workflow.sign(doc.id, users["doyen"].id)
    with pytest.raises(UnauthorizedError):
        workflow.sign(doc.id, users["doyen"].id)


def test_stale_concurrent_sign_cannot_double_advance(
    session, session_factory, honoraria_users, make_document, workflow, finalizer, notifier,
    assert_chain_consistent
):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    doc_id = doc.id

    # second request loads the same active step before the first one commits
    stale = session_factory()
    stale_doc = stale.get(Document, doc_id)
    assert [s.state for s in stale_doc.signatures] == [SignatureState.PENDING, SignatureState.PENDING]
    stale_workflow = WorkflowService(stale, finalization_service=finalizer, notifier=notifier)

    workflow.sign(doc_id, users["doyen"].id, "premier")
    try:
        with pytest.raises(InvalidStateError):
            stale_workflow.sign(doc_id, users["doyen"].id, "second")
    finally:
        stale.close()

    doc, steps = assert_chain_consistent(doc_id)
    assert [s.state for s in steps] == [SignatureState.SIGNED, SignatureState.PENDING]
    assert steps[0].comment == "premier"
    assert doc.current_signer_id == users["sgac"].id
    assert doc.version == 2
    assert notifier.recipients(NotificationKind.SIGNATURE_REQUIRED) == [users["doyen"].id, users["sgac"].id]


def test_stale_reject_after_sign_fails(session, session_factory, honoraria_users, make_document, workflow,
                                       finalizer, notifier, assert_chain_consistent):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    doc_id = doc.id

    # held until the end so the identity map keeps the pre-sign rows
    stale = session_factory()
    stale_doc = stale.get(Document, doc_id)
    assert [s.state for s in stale_doc.signatures] == [SignatureState.PENDING, SignatureState.PENDING]
    stale_workflow = WorkflowService(stale, finalization_service=finalizer, notifier=notifier)

    workflow.sign(doc_id, users["doyen"].id)
    try:
        # refused either by the conditional update or by the turn check on fresh rows
        with pytest.raises((InvalidStateError, UnauthorizedError)):
            stale_workflow.reject(doc_id, users["doyen"].id, "changement d'avis")
    finally:
        stale.close()

    doc, steps = assert_chain_consistent(doc_id)
    assert doc.status == DocumentStatus.PENDING_SIGNATURE
    assert doc.rejected_at is None
    assert [s.state for s in steps] == [SignatureState.SIGNED, SignatureState.PENDING]
    assert notifier.recipients(NotificationKind.DOCUMENT_REJECTED) == []


# --- Chain construction ---

def test_tie_break_picks_lowest_active_user_id(session, make_user, make_document, workflow):
    creator = make_user(UserRole.APPARITEUR)
    make_user(UserRole.DOYEN, id=40)
    make_user(UserRole.DOYEN, id=25)
    make_user(UserRole.DOYEN, id=10, active=False)
    make_user(UserRole.SGAC, id=30)
    doc = make_document(creator, DocumentType.LETTRE_HONORAIRES)

    steps = workflow.initialize_workflow(doc.id, creator.id)

    assert [s.signer_id for s in steps] == [25, 30]


def test_missing_required_role_is_omitted_and_logged(session, make_user, make_document, workflow, caplog):
    saf = make_user(UserRole.SAF)
    make_user(UserRole.COMPTABLE)
    make_user(UserRole.DOYEN)
    doc = make_document(saf, DocumentType.RELEVE_NOTES)
    caplog.set_level(logging.WARNING)

    steps = workflow.initialize_workflow(doc.id, saf.id)

    # order numbers are relative: no gap where libraire and bibliothecaire were dropped
    assert [(s.order, s.role) for s in steps] == [
        (1, UserRole.SAF), (2, UserRole.COMPTABLE), (3, UserRole.DOYEN)
    ]
    assert "required step 2 (libraire) omitted" in caplog.text
    assert "required step 4 (bibliothecaire) omitted" in caplog.text


def test_fail_policy_refuses_incomplete_chain(session, make_user, make_document, finalizer, notifier):
    saf = make_user(UserRole.SAF)
    make_user(UserRole.DOYEN)
    workflow = WorkflowService(
        session, finalization_service=finalizer, notifier=notifier, missing_signer_policy="fail"
    )
    doc = make_document(saf, DocumentType.RELEVE_NOTES)

    with pytest.raises(WorkflowValidationError, match="libraire"):
        workflow.initialize_workflow(doc.id, saf.id)

    session.expire_all()
    assert session.get(Document, doc.id).status == DocumentStatus.DRAFT
    assert session.query(SignatureStep).count() == 0
    assert notifier.events == []


def test_fail_policy_still_omits_optional_steps(session, honoraria_users, make_document, finalizer, notifier):
    workflow = WorkflowService(
        session, finalization_service=finalizer, notifier=notifier, missing_signer_policy="fail"
    )
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)

    steps = workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    assert [s.role for s in steps] == [UserRole.DOYEN, UserRole.SGAC]


def test_unknown_policy_is_rejected(session, finalizer, notifier):
    with pytest.raises(ValueError):
        WorkflowService(session, finalization_service=finalizer, notifier=notifier, missing_signer_policy="skip")


def test_type_without_template_stays_draft(session, make_user, make_document, workflow, notifier, caplog):
    saf = make_user(UserRole.SAF)
    make_user(UserRole.DOYEN)
    doc = make_document(saf, DocumentType.PV_CONSEIL, title="PV conseil de faculté")
    caplog.set_level(logging.WARNING)

    steps = workflow.initialize_workflow(doc.id, saf.id)

    assert steps == []
    assert doc.status == DocumentStatus.DRAFT
    assert doc.current_signer_id is None
    assert notifier.events == []
    assert "no workflow template for type pv_conseil" in caplog.text
    assert workflow.get_workflow(doc.id).status == WorkflowStatus.NOT_STARTED


def test_directory_failure_aborts_initialization_without_writes(
    session, honoraria_users, make_document, finalizer, notifier
):
    class UnavailableDirectory(RoleDirectory):
        def resolve_active_users_by_role(self, role):
            raise DependencyFailureError("directory timeout")

    workflow = WorkflowService(
        session, finalization_service=finalizer, notifier=notifier,
        role_directory=UnavailableDirectory(session),
    )
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES)

    with pytest.raises(DependencyFailureError):
        workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    session.expire_all()
    assert session.get(Document, doc.id).status == DocumentStatus.DRAFT
    assert session.query(SignatureStep).count() == 0


def test_role_directory_wraps_database_errors(session, monkeypatch):
    directory = RoleDirectory(session)

    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT users.id", {}, Exception("connection lost"))

    monkeypatch.setattr(session, "query", broken_query)

    with pytest.raises(DependencyFailureError):
        directory.resolve_active_users_by_role(UserRole.DOYEN)


# --- Initialization preconditions ---

def test_initialize_preconditions(session, honoraria_users, make_user, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)

    with pytest.raises(NotFoundError):
        workflow.initialize_workflow(9999, users["creator"].id)
    with pytest.raises(UnauthorizedError):
        workflow.initialize_workflow(doc.id, users["doyen"].id)

    workflow.initialize_workflow(doc.id, users["creator"].id)
    with pytest.raises(InvalidStateError):
        workflow.initialize_workflow(doc.id, users["creator"].id)
    assert session.query(SignatureStep).filter_by(document_id=doc.id).count() == 2


def test_initialize_requires_content(session, honoraria_users, make_document, workflow):
    doc = make_document(honoraria_users["creator"], DocumentType.LETTRE_HONORAIRES, with_content=False)

    with pytest.raises(WorkflowValidationError, match="content"):
        workflow.initialize_workflow(doc.id, honoraria_users["creator"].id)

    assert doc.status == DocumentStatus.DRAFT


# --- Signing details ---

def test_sign_records_comment_or_default_attestation(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)

    workflow.sign(doc.id, users["doyen"].id, "Vu et approuvé")
    workflow.sign(doc.id, users["sgac"].id, "   ")

    steps = DocumentRepository(session).get_steps(doc.id)
    assert [s.comment for s in steps] == ["Vu et approuvé", "OK SIGNÉ"]


def test_notification_failure_does_not_undo_signature(session, honoraria_users, make_document, finalizer, caplog):
    class BrokenNotifier:
        def notify(self, user_id, kind, document_id, message):
            raise RuntimeError("smtp down")

    users = honoraria_users
    workflow = WorkflowService(session, finalization_service=finalizer, notifier=BrokenNotifier())
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)

    workflow.initialize_workflow(doc.id, users["creator"].id)
    result = workflow.sign(doc.id, users["doyen"].id)

    assert result.current_signer_id == users["sgac"].id
    assert "could not be delivered" in caplog.text


def test_can_user_sign_only_for_active_signer(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    assert not workflow.can_user_sign(doc.id, users["doyen"].id)

    workflow.initialize_workflow(doc.id, users["creator"].id)

    assert workflow.can_user_sign(doc.id, users["doyen"].id)
    assert not workflow.can_user_sign(doc.id, users["sgac"].id)
    assert not workflow.can_user_sign(12345, users["doyen"].id)


# --- Workflow query ---

def test_workflow_projection_tracks_every_transition(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)

    view = workflow.get_workflow(doc.id)
    assert view.status == WorkflowStatus.NOT_STARTED
    assert view.steps == []
    assert projection_matches(view)

    workflow.initialize_workflow(doc.id, users["creator"].id)
    view = workflow.get_workflow(doc.id)
    assert view.status == WorkflowStatus.PENDING
    assert view.current_step == 1
    assert [s.signer_name for s in view.steps] == ["Test Doyen", "Test Sgac"]
    assert projection_matches(view)

    workflow.sign(doc.id, users["doyen"].id)
    view = workflow.get_workflow(doc.id)
    assert view.current_step == 2
    assert view.steps[0].state == SignatureState.SIGNED
    assert view.steps[0].acted_at is not None
    assert projection_matches(view)

    workflow.sign(doc.id, users["sgac"].id)
    view = workflow.get_workflow(doc.id)
    assert view.status == WorkflowStatus.COMPLETED
    assert view.current_step == 2
    assert view.document_status == DocumentStatus.COMPLETED
    assert projection_matches(view)


def test_projection_reports_rejection(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)
    workflow.reject(doc.id, users["doyen"].id, "pièces manquantes")

    view = workflow.get_workflow(doc.id)

    assert view.status == WorkflowStatus.REJECTED
    assert view.steps[0].comment == "pièces manquantes"
    assert projection_matches(view)


def test_projection_detects_divergence(session, honoraria_users, make_document, workflow):
    users = honoraria_users
    doc = make_document(users["creator"], DocumentType.LETTRE_HONORAIRES)
    workflow.initialize_workflow(doc.id, users["creator"].id)

    # simulate a corrupted row: status flipped without touching the steps
    doc.status = DocumentStatus.COMPLETED
    session.commit()

    assert not projection_matches(workflow.get_workflow(doc.id))


def test_get_workflow_unknown_document(workflow):
    with pytest.raises(NotFoundError):
        workflow.get_workflow(424242)
