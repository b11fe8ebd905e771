from jbs.schemas.auth import LoginRequest, LoginResponse
from jbs.schemas.user import UserResponse

__all__ = [
    "LoginRequest",
    "LoginResponse",
    "UserResponse",
]
