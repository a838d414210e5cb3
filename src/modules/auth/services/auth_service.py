import logging
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session
from modules.documents.models.user import User, UserRole
from settings import get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Accounts for these roles sign binding steps; they stay inactive until a SAF user activates them
RESTRICTED_ROLES = frozenset({
    UserRole.SAF,
    UserRole.DOYEN,
    UserRole.RECTEUR,
    UserRole.SGAC,
    UserRole.SGAD,
    UserRole.DIRCAB,
})

class AuthService:

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        return pwd_context.hash(password)

    @staticmethod
    def requires_activation(role: UserRole) -> bool:
        return role in RESTRICTED_ROLES

    @staticmethod
    def register_user(
        db: Session,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: UserRole
    ) -> User:
        """
        Creates an account. Restricted roles start inactive, so the role directory
        ignores them as signers until they are activated.
        """
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=AuthService.get_password_hash(password),
            role=role,
            is_active=not AuthService.requires_activation(role)
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info("User %s registered with role %s (active=%s)", user.id, role.value, user.is_active)
        return user

    @staticmethod
    def authenticate_user(db: Session, email: str, password: str) -> Optional[User]:
        """Returns the active user matching the credentials, or None"""
        user = db.query(User).filter(User.email == email).first()
        if not user:
            return None
        if not AuthService.verify_password(password, user.password_hash):
            return None
        if not user.is_active:
            logger.info("Login refused for inactive user %s", user.id)
            return None
        return user

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        settings = get_settings()
        to_encode = data.copy()
        expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
        to_encode.update({"exp": expire})
        return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)

    @staticmethod
    def create_user_token(user: User) -> str:
        # role is informational for clients; authorization always reloads the user
        return AuthService.create_access_token({"sub": user.email, "uid": user.id, "role": user.role.value})

    @staticmethod
    def verify_token(token: str) -> Optional[str]:
        """Verifies the JWT and returns the user's email"""
        settings = get_settings()
        try:
            payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        except JWTError:
            return None
        return payload.get("sub")

    @staticmethod
    def get_current_user(db: Session, token: str) -> Optional[User]:
        """Acting user behind a token; deactivated accounts lose access immediately."""
        email = AuthService.verify_token(token)
        if email is None:
            return None
        user = db.query(User).filter(User.email == email).first()
        if user is None or not user.is_active:
            return None
        return user
