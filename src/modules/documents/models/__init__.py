from .user import User, UserRole
from .document import Document, DocumentStatus, DocumentType
from .signature import SignatureStep, SignatureState

__all__ = [
    'User', 'UserRole',
    'Document', 'DocumentStatus', 'DocumentType',
    'SignatureStep', 'SignatureState',
]
