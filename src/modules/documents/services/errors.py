class WorkflowError(Exception):
    """Base class for errors raised by the document workflow services"""
    retryable = False


class NotFoundError(WorkflowError):
    """Document, step or user does not exist"""


class InvalidStateError(WorkflowError):
    """Operation attempted on a document or step not in the required state"""


class UnauthorizedError(WorkflowError):
    """Acting user is not allowed to perform the operation"""


class DependencyFailureError(WorkflowError):
    """Role directory, storage or finalization call failed; safe to retry"""
    retryable = True


class WorkflowValidationError(WorkflowError):
    """Malformed or incomplete input"""
