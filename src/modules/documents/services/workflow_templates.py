"""
Approval chains per document type.

Templates are loaded once at process start and exposed read-only; the engine
receives them as an injected ``WorkflowTemplates`` object.
"""
import json
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, TypeAdapter

from modules.documents.models.document import DocumentType
from modules.documents.models.user import UserRole
from settings import get_settings

logger = logging.getLogger(__name__)

# Placeholder for "the role of whoever created the document"
CREATOR_ROLE = "creator_role"

RoleRef = Union[UserRole, str]


@dataclass(frozen=True)
class TemplateStep:
    role: RoleRef
    optional: bool = False

    def effective_role(self, creator_role: UserRole) -> UserRole:
        if self.role == CREATOR_ROLE:
            return creator_role
        return self.role


DEFAULT_TEMPLATES: Dict[DocumentType, Tuple[TemplateStep, ...]] = {
    DocumentType.RELEVE_NOTES: (
        TemplateStep(CREATOR_ROLE),  # saf or appariteur
        TemplateStep(UserRole.LIBRAIRE),
        TemplateStep(UserRole.COMPTABLE),
        TemplateStep(UserRole.BIBLIOTHECAIRE),
        TemplateStep(UserRole.DOYEN),
    ),
    DocumentType.LETTRE_HONORAIRES: (
        TemplateStep(UserRole.CP, optional=True),
        TemplateStep(UserRole.DOYEN),
        TemplateStep(UserRole.SGAC),
    ),
}


class WorkflowTemplates:
    """Immutable document type -> ordered template steps mapping"""

    def __init__(self, templates: Mapping[DocumentType, Tuple[TemplateStep, ...]]):
        self._templates = MappingProxyType({
            doc_type: tuple(steps) for doc_type, steps in templates.items()
        })

    def for_type(self, document_type: DocumentType) -> Tuple[TemplateStep, ...]:
        return self._templates.get(document_type, ())

    def has_template(self, document_type: DocumentType) -> bool:
        return bool(self._templates.get(document_type))

    def document_types(self) -> List[DocumentType]:
        return list(self._templates.keys())


class TemplateStepConfig(BaseModel):
    role: str
    optional: bool = False

    def to_step(self) -> TemplateStep:
        if self.role == CREATOR_ROLE:
            return TemplateStep(CREATOR_ROLE, self.optional)
        return TemplateStep(UserRole(self.role), self.optional)


_templates_file_adapter = TypeAdapter(Dict[DocumentType, List[TemplateStepConfig]])


def parse_templates(raw: dict) -> WorkflowTemplates:
    """
    Build templates from a ``{"document_type": [{"role": ..., "optional": ...}]}``
    mapping. Unknown document types or roles raise ``ValueError``.
    """
    parsed = _templates_file_adapter.validate_python(raw)
    return WorkflowTemplates({
        doc_type: tuple(step.to_step() for step in steps)
        for doc_type, steps in parsed.items()
    })


def load_templates(path: Optional[str] = None) -> WorkflowTemplates:
    if not path:
        return WorkflowTemplates(DEFAULT_TEMPLATES)
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    templates = parse_templates(raw)
    logger.info("Loaded workflow templates for %s from %s",
                [t.value for t in templates.document_types()], path)
    return templates


_templates_instance = None

def get_workflow_templates() -> WorkflowTemplates:
    """Templates are read once per process and shared read-only afterwards."""
    global _templates_instance
    if _templates_instance is None:
        _templates_instance = load_templates(get_settings().workflow_templates_file)
    return _templates_instance
