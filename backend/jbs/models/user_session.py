"""
Active session records backing issued bearer tokens.

The JWT carries the session id in its ``sid`` claim; a token is only honoured
while its session row exists and is not revoked.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jbs.db.base import Base, UTCDateTime, UUIDMixin


class UserSession(Base, UUIDMixin):
    __tablename__ = "user_sessions"

    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    device: Mapped[str] = mapped_column(String(512), nullable=False, default="Unknown Device")
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False)  # IPv6 max length
    issued_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    remember_me: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Risk verdict of the login that opened this session
    risk_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_user_sessions_user_issued", "user_id", "issued_at"),
    )

    def __repr__(self) -> str:
        return f"<UserSession {self.id} user={self.user_id} revoked={self.revoked_at is not None}>"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now
