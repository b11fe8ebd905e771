"""
Account lockout policy.

Tracks consecutive failed logins per account on the user row and locks the
account for ``LOCKOUT_MINUTES`` once ``LOCKOUT_MAX_ATTEMPTS`` is reached.
Lock state is only ever written from this module.

Mutations for one account are serialised by a per-account asyncio lock plus
a ``SELECT ... FOR UPDATE`` on the user row, and the counter is bumped with
an atomic SQL increment so concurrent failures cannot be lost.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import settings
from jbs.core.exceptions import InfraError
from jbs.core.locks import get_keyed_lock
from jbs.models.login_event import LoginEventType
from jbs.models.user import User
from jbs.services.login_events import LoginEventLog
from jbs.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_account_locks = get_keyed_lock("lockout")


@dataclass(frozen=True)
class Admission:
    """Result of an admission check. Denied admissions carry the remaining lock time."""

    allowed: bool
    retry_after: timedelta | None = None
    # Set when the lock state could not be read; the caller must fail closed
    fail_closed: bool = False

    @classmethod
    def allow(cls) -> "Admission":
        return cls(allowed=True)

    @classmethod
    def deny(cls, retry_after: timedelta) -> "Admission":
        return cls(allowed=False, retry_after=retry_after)


@dataclass(frozen=True)
class LockOutcome:
    failed_attempt_count: int
    remaining_attempts: int
    locked_until: datetime | None = None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


@dataclass(frozen=True)
class LockStatus:
    is_locked: bool
    locked_until: datetime | None
    failed_attempt_count: int
    remaining_attempts: int
    retry_after_minutes: int | None


class LockoutPolicy:
    def __init__(
        self,
        db: AsyncSession,
        max_attempts: int | None = None,
        lock_duration: timedelta | None = None,
        lock_timeout: float | None = None,
    ):
        self.db = db
        self.events = LoginEventLog(db)
        self.max_attempts = max_attempts if max_attempts is not None else settings.LOCKOUT_MAX_ATTEMPTS
        if lock_duration is None:
            lock_duration = timedelta(minutes=settings.LOCKOUT_MINUTES)
        self.lock_duration = lock_duration
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.AUTH_TIMEOUT_SECONDS

    async def check_admission(self, user_id: UUID, now: datetime | None = None) -> Admission:
        """
        Decide whether ``user_id`` may attempt a password check.

        Reads only; never changes lock state. An expired lock is simply
        ignored, the counter is reset by the next recorded outcome.
        """
        now = ensure_utc(now) if now else utcnow()
        try:
            result = await self.db.execute(select(User.locked_until).where(User.id == user_id))
            locked_until = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Lock state read failed for {user_id}: {e}")
            return Admission(allowed=False, fail_closed=True)

        if locked_until is not None:
            locked_until = ensure_utc(locked_until)
            if locked_until > now:
                return Admission.deny(locked_until - now)

        return Admission.allow()

    async def record_outcome(
        self,
        user_id: UUID,
        success: bool,
        ip_address: str = "unknown",
        user_agent: str = "Unknown",
        now: datetime | None = None,
    ) -> LockOutcome:
        """
        Apply the outcome of a password check to the account's lock state.

        A failure bumps the counter; reaching the threshold locks the account,
        resets the counter and appends an ``account_locked`` event. A success
        clears both counter and lock.

        Raises:
            InfraError: lock state could not be written
        """
        now = ensure_utc(now) if now else utcnow()
        try:
            async with _account_locks.hold(user_id, timeout=self.lock_timeout):
                if success:
                    await self._reset(user_id)
                    return LockOutcome(failed_attempt_count=0, remaining_attempts=self.max_attempts)
                return await self._record_failure(user_id, ip_address, user_agent, now)
        except TimeoutError as e:
            raise InfraError("lock state busy") from e
        except SQLAlchemyError as e:
            logger.error(f"Lock state write failed for {user_id}: {e}")
            raise InfraError("lock state unavailable") from e

    async def _record_failure(
        self,
        user_id: UUID,
        ip_address: str,
        user_agent: str,
        now: datetime,
    ) -> LockOutcome:
        await self.db.execute(select(User.id).where(User.id == user_id).with_for_update())
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_attempt_count=User.failed_attempt_count + 1)
            .returning(User.failed_attempt_count)
        )
        count = result.scalar_one()

        if count < self.max_attempts:
            return LockOutcome(failed_attempt_count=count, remaining_attempts=self.max_attempts - count)

        locked_until = now + self.lock_duration
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_attempt_count=0, locked_until=locked_until)
        )
        await self.events.append(
            LoginEventType.ACCOUNT_LOCKED,
            ip_address,
            user_agent,
            user_id=user_id,
            details={
                "reason": "too_many_failed_attempts",
                "attemptCount": count,
                "lockDurationMinutes": int(self.lock_duration.total_seconds() // 60),
            },
        )
        logger.warning(f"Account {user_id} locked until {locked_until.isoformat()} after {count} failed attempts")
        return LockOutcome(failed_attempt_count=count, remaining_attempts=0, locked_until=locked_until)

    async def _reset(self, user_id: UUID) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(failed_attempt_count=0, locked_until=None)
        )

    async def lock(
        self,
        user_id: UUID,
        reason: str,
        duration: timedelta | None = None,
        ip_address: str = "unknown",
        user_agent: str = "Unknown",
        now: datetime | None = None,
    ) -> datetime:
        """Lock an account outright, e.g. on a high-risk login."""
        now = ensure_utc(now) if now else utcnow()
        locked_until = now + (duration or self.lock_duration)
        try:
            async with _account_locks.hold(user_id, timeout=self.lock_timeout):
                await self.db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(failed_attempt_count=0, locked_until=locked_until)
                )
                await self.events.append(
                    LoginEventType.ACCOUNT_LOCKED,
                    ip_address,
                    user_agent,
                    user_id=user_id,
                    details={"reason": reason},
                )
        except TimeoutError as e:
            raise InfraError("lock state busy") from e
        except SQLAlchemyError as e:
            raise InfraError("lock state unavailable") from e

        logger.warning(f"Account {user_id} locked until {locked_until.isoformat()}: {reason}")
        return locked_until

    async def unlock(self, user_id: UUID) -> None:
        """Clear the lock and the failure counter (admin action)."""
        try:
            async with _account_locks.hold(user_id, timeout=self.lock_timeout):
                await self._reset(user_id)
        except TimeoutError as e:
            raise InfraError("lock state busy") from e
        except SQLAlchemyError as e:
            raise InfraError("lock state unavailable") from e

    async def lock_status(self, user_id: UUID, now: datetime | None = None) -> LockStatus | None:
        now = ensure_utc(now) if now else utcnow()
        result = await self.db.execute(
            select(User.failed_attempt_count, User.locked_until).where(User.id == user_id)
        )
        row = result.one_or_none()
        if row is None:
            return None

        locked_until = ensure_utc(row.locked_until) if row.locked_until else None
        locked = locked_until is not None and locked_until > now
        retry_after_minutes = None
        if locked:
            seconds = int((locked_until - now).total_seconds())
            retry_after_minutes = -(-seconds // 60)

        return LockStatus(
            is_locked=locked,
            locked_until=locked_until if locked else None,
            failed_attempt_count=row.failed_attempt_count,
            remaining_attempts=max(0, self.max_attempts - row.failed_attempt_count),
            retry_after_minutes=retry_after_minutes,
        )
