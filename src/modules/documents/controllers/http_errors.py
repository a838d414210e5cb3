from fastapi import HTTPException, status

from modules.documents.services.errors import (
    WorkflowError,
    NotFoundError,
    InvalidStateError,
    UnauthorizedError,
    DependencyFailureError,
    WorkflowValidationError,
)

ERROR_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidStateError: status.HTTP_409_CONFLICT,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    DependencyFailureError: status.HTTP_503_SERVICE_UNAVAILABLE,
    WorkflowValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}

def to_http_exception(error: WorkflowError) -> HTTPException:
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(error, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    headers = {"Retry-After": "30"} if error.retryable else None
    return HTTPException(status_code=status_code, detail=str(error), headers=headers)
