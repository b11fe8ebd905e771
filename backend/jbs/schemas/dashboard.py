from datetime import datetime

from jbs.schemas.base import CamelModel
from jbs.schemas.user import UserResponse


class DashboardResponse(CamelModel):
    user: UserResponse
    active_sessions: int
    suspicious_sessions: int
    last_login_at: datetime | None = None
