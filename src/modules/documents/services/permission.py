from modules.documents.models.document import Document, DocumentStatus, DocumentType
from modules.documents.models.user import User, UserRole

VIEW_PERMISSIONS = {
    DocumentType.RELEVE_NOTES: {UserRole.SAF, UserRole.DOYEN, UserRole.APPARITEUR, UserRole.COMPTABLE},
    DocumentType.LETTRE_HONORAIRES: {
        UserRole.SAF, UserRole.DOYEN, UserRole.SGAD, UserRole.SGAC,
        UserRole.AB, UserRole.RECTEUR, UserRole.CAISSIERE,
    },
    DocumentType.PV_CONSEIL: {UserRole.SAF, UserRole.DOYEN, UserRole.SGAC, UserRole.RECTEUR},
    DocumentType.CORRESPONDANCE: {
        UserRole.SAF, UserRole.DOYEN, UserRole.SGAC, UserRole.SGAD, UserRole.RECTEUR, UserRole.DIRCAB,
    },
}

def has_view_permission(role: UserRole, document_type: DocumentType) -> bool:
    return role in VIEW_PERMISSIONS.get(document_type, set())

def can_view(user: User, document: Document) -> bool:
    if document.created_by == user.id or document.current_signer_id == user.id:
        return True
    if any(step.signer_id == user.id for step in document.signatures):
        return True
    return has_view_permission(user.role, document.document_type)

def can_edit(user: User, document: Document) -> bool:
    return document.created_by == user.id and document.status == DocumentStatus.DRAFT

def can_sign(user: User, document: Document) -> bool:
    return document.current_signer_id == user.id and document.status == DocumentStatus.PENDING_SIGNATURE

def can_download(user: User, document: Document) -> bool:
    # Creator, signers of the chain, then view rights by type
    if document.created_by == user.id:
        return True
    if any(step.signer_id == user.id for step in document.signatures):
        return True
    return has_view_permission(user.role, document.document_type)

def document_permissions(user: User, document: Document) -> dict:
    return {
        "can_view": can_view(user, document),
        "can_edit": can_edit(user, document),
        "can_sign": can_sign(user, document),
        "can_download": can_download(user, document),
    }
