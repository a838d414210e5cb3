import json
import logging
import os
import tempfile
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import List, Protocol

from PyPDF2 import PdfReader, PdfWriter
from PyPDF2.errors import PdfReadError

from modules.documents.models.document import Document
from modules.documents.services.errors import DependencyFailureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attestation:
    signer_id: int
    signer_name: str
    signer_role: str
    text: str
    signed_at: datetime

    def to_dict(self) -> dict:
        data = asdict(self)
        data["signed_at"] = self.signed_at.isoformat() if self.signed_at else None
        return data


class FinalizationService(Protocol):
    def finalize(self, document: Document, attestations: List[Attestation]) -> str:
        """Produce the archived artifact and return its location. Must be idempotent per document."""
        ...


class PdfArchiveFinalizationService:
    """
    Copies the document's PDF into the archive directory with the ordered
    attestations stored in the PDF metadata.

    The artifact name is derived from the document id, so a second call for the
    same document returns the existing file instead of writing a new one.
    """

    def __init__(self, archive_dir: str):
        self.archive_dir = archive_dir

    def artifact_path(self, document_id: int) -> str:
        return os.path.join(self.archive_dir, f"document_{document_id}_final.pdf")

    def finalize(self, document: Document, attestations: List[Attestation]) -> str:
        path = self.artifact_path(document.id)
        if os.path.exists(path):
            logger.info("Document %s already archived at %s", document.id, path)
            return path

        if not document.file_path:
            raise DependencyFailureError(f"Document {document.id} has no content to finalize")

        try:
            reader = PdfReader(document.file_path)
            writer = PdfWriter()
            for page in reader.pages:
                writer.add_page(page)
            writer.add_metadata({
                "/Title": document.title,
                "/Attestations": json.dumps([a.to_dict() for a in attestations], ensure_ascii=False),
            })

            os.makedirs(self.archive_dir, exist_ok=True)
            self._write_atomically(writer, path, document.id)
        except (OSError, PdfReadError) as e:
            logger.exception("Finalization of document %s failed", document.id)
            raise DependencyFailureError(f"Finalization failed for document {document.id}: {e}") from e

        logger.info("Document %s archived at %s with %d attestations",
                    document.id, path, len(attestations))
        return path

    def _write_atomically(self, writer: PdfWriter, path: str, document_id: int) -> None:
        # Temp name is unique per call
        with tempfile.NamedTemporaryFile(
            dir=self.archive_dir, prefix=f"document_{document_id}_", suffix=".part", delete=False
        ) as f:
            tmp_path = f.name
            try:
                writer.write(f)
            except Exception:
                f.close()
                os.unlink(tmp_path)
                raise
        try:
            os.replace(tmp_path, path)
        except OSError:
            os.unlink(tmp_path)
            raise
