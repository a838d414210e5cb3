from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional, List
from modules.documents.models.user import UserRole

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    user_name: str
    user_role: UserRole

class RegisterRequest(BaseModel):
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)
    # Checked against password when the client sends it
    confirm_password: Optional[str] = None
    role: UserRole

    @model_validator(mode="after")
    def passwords_match(self):
        if self.confirm_password is not None and self.confirm_password != self.password:
            raise ValueError("Les mots de passe ne correspondent pas")
        return self

class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None

class UserResponse(BaseModel):
    id: int
    first_name: str
    last_name: str
    email: str
    role: UserRole
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class RegistrationResponse(BaseModel):
    user: UserResponse
    pending_activation: bool
    message: str

class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
