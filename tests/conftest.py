import io
import itertools
from datetime import datetime

import pytest
from reportlab.pdfgen import canvas
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import create_tables  # noqa: F401  registers every model on Base
from database import Base
from modules.documents.models.document import Document, DocumentStatus, DocumentType
from modules.documents.models.signature import SignatureStep, SignatureState
from modules.documents.models.user import User
from modules.documents.services.errors import DependencyFailureError
from modules.documents.services.workflow_service import WorkflowService, active_step

# One shared in-memory connection so several sessions see the same database
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

_counter = itertools.count(1)


def create_dummy_pdf_bytes(text="PDF para test"):
    buf = io.BytesIO()
    c = canvas.Canvas(buf)
    c.drawString(50, 750, text)
    c.save()
    buf.seek(0)
    return buf.read()


class FakeFinalizer:
    """Finalization double: fails ``failures`` times, then returns one path per document."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []
        self.artifacts = {}

    def finalize(self, document, attestations):
        self.calls.append((document.id, list(attestations)))
        if self.failures > 0:
            self.failures -= 1
            raise DependencyFailureError("archive storage unavailable")
        return self.artifacts.setdefault(document.id, f"archive/document_{document.id}_final.pdf")


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, user_id, kind, document_id, message):
        self.events.append((user_id, kind, document_id, message))

    def recipients(self, kind):
        return [user_id for user_id, k, _, _ in self.events if k == kind]


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory():
    return TestingSessionLocal


@pytest.fixture
def session():
    db = TestingSessionLocal()
    yield db
    db.close()


@pytest.fixture
def pdf_bytes():
    return create_dummy_pdf_bytes()


@pytest.fixture
def make_user(session):
    def _make(role, id=None, active=True, first_name="Test", last_name=None):
        n = next(_counter)
        user = User(
            id=id,
            first_name=first_name,
            last_name=last_name or role.value.capitalize(),
            email=f"{role.value}{n}@univ.cd",
            password_hash="123",
            role=role,
            is_active=active,
            created_at=datetime.utcnow(),
        )
        session.add(user)
        session.commit()
        return user
    return _make


@pytest.fixture
def make_document(session, tmp_path):
    def _make(creator, document_type=DocumentType.RELEVE_NOTES, title="Relevé de notes L1", with_content=True):
        file_path = None
        if with_content:
            path = tmp_path / f"source_{next(_counter)}.pdf"
            path.write_bytes(create_dummy_pdf_bytes(title))
            file_path = str(path)
        doc = Document(
            title=title,
            document_type=document_type,
            status=DocumentStatus.DRAFT,
            created_by=creator.id,
            file_path=file_path,
        )
        session.add(doc)
        session.commit()
        session.refresh(doc)
        return doc
    return _make


@pytest.fixture
def finalizer():
    return FakeFinalizer()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def workflow(session, finalizer, notifier):
    return WorkflowService(session, finalization_service=finalizer, notifier=notifier)


@pytest.fixture
def assert_chain_consistent(session):
    """Checks ordering and current-signer invariants straight from the database."""
    def _check(document_id):
        session.expire_all()
        doc = session.get(Document, document_id)
        steps = (
            session.query(SignatureStep)
            .filter(SignatureStep.document_id == document_id)
            .order_by(SignatureStep.order)
            .all()
        )
        assert [s.order for s in steps] == list(range(1, len(steps) + 1))
        current = active_step(steps)
        if doc.status == DocumentStatus.PENDING_SIGNATURE and current is not None:
            assert all(s.state == SignatureState.SIGNED for s in steps if s.order < current.order)
            assert doc.current_signer_id == current.signer_id
        else:
            assert doc.current_signer_id is None
        return doc, steps
    return _check
