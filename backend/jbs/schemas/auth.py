from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from jbs.models.user import UserRole
from jbs.schemas.base import CamelModel
from jbs.schemas.user import UserResponse


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    user_type: UserRole | None = None
    remember_me: bool = False


class StudentRegisterRequest(CamelModel):
    full_name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    phone: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=255)
    institution: str | None = Field(default=None, max_length=255)


class OwnerRegisterRequest(CamelModel):
    owner_name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    company_name: str = Field(min_length=2, max_length=255)
    phone: str | None = Field(default=None, max_length=30)
    city: str | None = Field(default=None, max_length=100)
    address: str | None = Field(default=None, max_length=255)


class SecurityVerdict(CamelModel):
    risk_score: int
    is_suspicious: bool
    reasons: list[str] = []


class AuthResponse(CamelModel):
    token: str
    user: UserResponse


class LoginResponse(AuthResponse):
    expires_in: int
    redirect_to: str
    security: SecurityVerdict


class RefreshResponse(CamelModel):
    token: str
    expires_in: int


class MessageResponse(CamelModel):
    success: bool = True
    message: str


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class ChangePasswordResponse(MessageResponse):
    revoked_sessions: int = 0


class ForgotPasswordRequest(CamelModel):
    email: EmailStr


class ForgotPasswordResponse(MessageResponse):
    # Only populated in DEBUG, where no mail is sent
    reset_url: str | None = None


class ResetTokenRequest(CamelModel):
    token: str = Field(min_length=1)


class ResetPasswordRequest(ResetTokenRequest):
    password: str = Field(min_length=1, max_length=128)


class VerifyResetTokenResponse(MessageResponse):
    email: str


class SessionResponse(CamelModel):
    id: UUID
    device: str
    ip_address: str
    issued_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    is_suspicious: bool = False
    is_current: bool = False


class SessionListResponse(CamelModel):
    sessions: list[SessionResponse]


class RevokeSessionsResponse(MessageResponse):
    revoked_sessions: int = 0
