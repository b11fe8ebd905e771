"""
Append-only log of authentication events.

Rows are written once and never updated. The risk scorer reads the trailing
window per user ordered by (timestamp, id) descending; statistics queries
group over longer windows.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from jbs.db.base import Base, UTCDateTime
from jbs.utils.time import utcnow


class LoginEventType(str, Enum):
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    ACCOUNT_LOCKED = "account_locked"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    PASSWORD_CHANGED = "password_changed"
    PASSWORD_RESET = "password_reset"


class LoginEvent(Base):
    __tablename__ = "login_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Null when the submitted email matched no account
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[LoginEventType] = mapped_column(
        SAEnum(
            LoginEventType,
            name="logineventtype",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)

    # GeoIP enrichment
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Parsed from the user agent
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_mobile: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_login_events_user_timestamp", "user_id", "timestamp"),
        Index("ix_login_events_type_timestamp", "event_type", "timestamp"),
        Index("ix_login_events_ip_timestamp", "ip_address", "timestamp"),
        Index("ix_login_events_suspicious_timestamp", "is_suspicious", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<LoginEvent {self.event_type.value} user={self.user_id} at {self.timestamp}>"
