from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.models.password_history import PasswordHistoryEntry
from jbs.models.user import User, UserRole
from jbs.models.user_session import UserSession

__all__ = [
    "LoginEvent",
    "LoginEventType",
    "PasswordHistoryEntry",
    "User",
    "UserRole",
    "UserSession",
]
