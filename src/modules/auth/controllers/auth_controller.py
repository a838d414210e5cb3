import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from database import get_db
from modules.auth.services.auth_service import AuthService
from modules.auth.schemas.auth_schemas import (
    LoginRequest, TokenResponse, RegisterRequest, RegistrationResponse,
    UserResponse, UserUpdate, UserListResponse
)
from modules.documents.models.user import User, UserRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])
security = HTTPBearer()

# Roles allowed to manage and activate user accounts
USER_MANAGER_ROLES = {UserRole.SAF}

def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security), db: Session = Depends(get_db)):
    """Authenticated user behind the bearer token; its id is the acting user of every workflow call"""
    user = AuthService.get_current_user(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Jeton invalide ou compte inactif",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def verify_user_manager(current_user: User = Depends(get_current_user)):
    if current_user.role not in USER_MANAGER_ROLES:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seul le SAF peut gérer les comptes utilisateurs"
        )
    return current_user

def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Utilisateur introuvable"
        )
    return user

def _ensure_email_free(db: Session, email: str):
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cet email est déjà enregistré"
        )

@router.post("/login", response_model=TokenResponse)
def login(login_data: LoginRequest, db: Session = Depends(get_db)):
    user = AuthService.authenticate_user(db, login_data.email, login_data.password)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Email ou mot de passe incorrect, ou compte en attente d'activation",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenResponse(
        access_token=AuthService.create_user_token(user),
        user_id=user.id,
        user_name=user.display_name,
        user_role=user.role
    )

@router.post("/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
def register_user(user_data: RegisterRequest, db: Session = Depends(get_db)):
    """
    Self-registration. Accounts for restricted roles (saf, doyen, recteur, sgac,
    sgad, dircab) are created inactive and wait for a SAF activation.
    """
    _ensure_email_free(db, user_data.email)

    user = AuthService.register_user(
        db,
        first_name=user_data.first_name,
        last_name=user_data.last_name,
        email=user_data.email,
        password=user_data.password,
        role=user_data.role
    )

    pending = not user.is_active
    message = (
        "Votre compte nécessite une validation administrative."
        if pending else "Inscription réussie"
    )
    return RegistrationResponse(user=UserResponse.model_validate(user), pending_activation=pending, message=message)

@router.get("/users", response_model=UserListResponse)
def list_users(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    role: Optional[UserRole] = Query(None, description="Filtrer par rôle"),
    is_active: Optional[bool] = Query(None, description="Filtrer par statut actif"),
    db: Session = Depends(get_db),
    current_user: User = Depends(verify_user_manager)
):
    query = db.query(User)

    if role is not None:
        query = query.filter(User.role == role)
    if is_active is not None:
        query = query.filter(User.is_active == is_active)

    total = query.count()
    users = query.order_by(User.id).offset(skip).limit(limit).all()

    return UserListResponse(users=users, total=total)

@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(verify_user_manager)
):
    return _get_user_or_404(db, user_id)

@router.post("/users/{user_id}/activate", response_model=UserResponse)
def activate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(verify_user_manager)
):
    """Activated users become eligible signers for chains built from now on."""
    user = _get_user_or_404(db, user_id)
    if not user.is_active:
        user.is_active = True
        db.commit()
        db.refresh(user)
        logger.info("User %s (%s) activated by %s", user.id, user.role.value, current_user.id)
    return user

@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    user_id: int,
    user_data: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(verify_user_manager)
):
    """
    Updates an account. Role changes and deactivation only affect chains built
    afterwards; steps already created keep their bound signer.
    """
    user = _get_user_or_404(db, user_id)

    if user_data.email and user_data.email != user.email:
        _ensure_email_free(db, user_data.email)

    update_data = user_data.model_dump(exclude_unset=True)
    if "password" in update_data:
        update_data["password_hash"] = AuthService.get_password_hash(update_data.pop("password"))

    for field, value in update_data.items():
        setattr(user, field, value)

    db.commit()
    db.refresh(user)
    logger.info("User %s updated by %s: %s", user.id, current_user.id, sorted(update_data))

    return user

@router.get("/me", response_model=UserResponse)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    return current_user
