from .document_service import DocumentService
from .workflow_service import WorkflowService, WorkflowStatus, WorkflowView
from .reminders import send_signature_reminders

__all__ = ['DocumentService', 'WorkflowService', 'WorkflowStatus', 'WorkflowView', 'send_signature_reminders']
