"""
Previous password hashes per user.

Consulted on password change to refuse recently used passwords. Capped at
``PASSWORD_HISTORY_SIZE`` rows per user by the credential store.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from jbs.db.base import Base, UTCDateTime
from jbs.utils.time import utcnow


class PasswordHistoryEntry(Base):
    __tablename__ = "password_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    changed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_password_history_user_changed", "user_id", "changed_at"),
    )

    def __repr__(self) -> str:
        return f"<PasswordHistoryEntry user={self.user_id} at {self.changed_at}>"
