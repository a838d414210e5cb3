from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean
from sqlalchemy.orm import relationship
from enum import Enum as PyEnum
from datetime import datetime
from database import Base

class UserRole(PyEnum):
    SAF = "saf"
    APPARITEUR = "appariteur"
    RECEPTIONNISTE = "receptionniste"
    LIBRAIRE = "libraire"
    COMPTABLE = "comptable"
    BIBLIOTHECAIRE = "bibliothecaire"
    DOYEN = "doyen"
    CP = "cp"
    SGAC = "sgac"
    SGAD = "sgad"
    AB = "ab"
    RECTEUR = "recteur"
    DIRCAB = "dircab"
    SECRETAIRE_SGAC = "secretaire_sgac"
    SECRETAIRE_SGAD = "secretaire_sgad"
    CAISSIERE = "caissiere"

class User(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, unique=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(Enum(UserRole), nullable=False, index=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Documents created by this user
    documents = relationship("Document", back_populates="creator", foreign_keys="Document.created_by")

    notifications = relationship(
        "Notification",
        back_populates="user",
        cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
