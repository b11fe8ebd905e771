from datetime import datetime
from uuid import UUID

from jbs.models.user import User, UserRole, profile_completion
from jbs.schemas.base import CamelModel


class UserResponse(CamelModel):
    id: UUID
    email: str
    username: str
    role: UserRole
    first_name: str
    last_name: str
    full_name: str
    phone: str | None = None
    city: str | None = None
    address: str | None = None
    business_name: str | None = None
    institution: str | None = None
    is_active: bool
    created_at: datetime
    last_login_at: datetime | None = None
    profile_completion: int = 0

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        response = cls.model_validate(user)
        response.profile_completion = profile_completion(user)
        return response


class LockStatusResponse(CamelModel):
    user_id: UUID
    email: str
    is_locked: bool
    locked_until: datetime | None = None
    failed_attempt_count: int
    remaining_attempts: int
    retry_after_minutes: int | None = None


class AccountStatusResponse(CamelModel):
    success: bool = True
    email: str
    is_active: bool
    message: str
    revoked_sessions: int = 0
