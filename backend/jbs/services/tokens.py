"""
Token service: bearer session tokens backed by ``user_sessions`` rows.

A token is a signed JWT whose ``sid`` claim names a session row. Revoking
the row revokes the token, so logout, password change and admin actions
take effect immediately without a token blacklist.

Session-list mutations for one user (issue with eviction, revoke all) are
serialised with a per-user asyncio lock and a row lock on the user's live
sessions.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import settings
from jbs.core.exceptions import (
    InfraError,
    PrincipalInactive,
    PrincipalMissing,
    TokenExpired,
    TokenMalformed,
    TokenRevoked,
)
from jbs.core.locks import get_keyed_lock
from jbs.core.security import create_access_token, decode_access_token, read_session_id, token_lifetime
from jbs.models.user import User
from jbs.models.user_session import UserSession
from jbs.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_session_locks = get_keyed_lock("sessions")


@dataclass(frozen=True)
class IssuedToken:
    token: str
    session: UserSession
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """Lifetime in seconds from issuance."""
        return int((self.expires_at - self.session.issued_at).total_seconds())


@dataclass(frozen=True)
class AuthContext:
    """The principal behind a validated token and the session it belongs to."""

    user: User
    session: UserSession


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except (TypeError, ValueError) as e:
        raise TokenMalformed("claim is not a UUID") from e


class TokenService:
    def __init__(self, db: AsyncSession, max_sessions: int | None = None):
        self.db = db
        self.max_sessions = max_sessions if max_sessions is not None else settings.MAX_ACTIVE_SESSIONS

    async def issue(
        self,
        user: User,
        user_agent: str,
        ip_address: str,
        remember_me: bool = False,
        risk_score: int = 0,
        is_suspicious: bool = False,
        now: datetime | None = None,
    ) -> IssuedToken:
        """
        Open a session for ``user`` and sign a token for it.

        Keeps at most ``MAX_ACTIVE_SESSIONS`` live sessions; the oldest are
        revoked to make room.
        """
        now = ensure_utc(now) if now else utcnow()
        expires_at = now + token_lifetime(remember_me)

        try:
            async with _session_locks.hold(user.id, timeout=settings.AUTH_TIMEOUT_SECONDS):
                live = await self._live_sessions(user.id, now, for_update=True)
                # 0 disables the cap
                overflow = live[self.max_sessions - 1:] if self.max_sessions > 0 else []
                if overflow:
                    await self._revoke_ids([s.id for s in overflow], now)
                    logger.info(f"Evicted {len(overflow)} oldest sessions for {user.id}")

                session = UserSession(
                    user_id=user.id,
                    device=(user_agent or "Unknown Device")[:512],
                    ip_address=ip_address[:45],
                    issued_at=now,
                    expires_at=expires_at,
                    last_activity_at=now,
                    remember_me=remember_me,
                    risk_score=risk_score,
                    is_suspicious=is_suspicious,
                )
                self.db.add(session)
                await self.db.flush()
        except TimeoutError as e:
            raise InfraError("session list busy") from e
        except SQLAlchemyError as e:
            logger.error(f"Failed to open session for {user.id}: {e}")
            raise InfraError("session store unavailable") from e

        token = create_access_token(
            subject=str(user.id),
            session_id=str(session.id),
            issued_at=now,
            expires_at=expires_at,
            extra_claims={"role": user.role.value},
        )
        return IssuedToken(token=token, session=session, expires_at=expires_at)

    async def validate(self, token: str, now: datetime | None = None) -> AuthContext:
        """
        Resolve a bearer token to its principal.

        Checks run in order: signature, expiry, revocation, principal.

        Raises:
            TokenMalformed, TokenExpired, TokenRevoked, PrincipalMissing,
            PrincipalInactive
        """
        payload = decode_access_token(token)
        user_id = _parse_uuid(payload["sub"])
        session_id = _parse_uuid(payload["sid"])
        now = ensure_utc(now) if now else utcnow()

        session = await self.db.get(UserSession, session_id, populate_existing=True)
        if session is None or session.revoked_at is not None:
            raise TokenRevoked(str(session_id))
        if session.user_id != user_id:
            raise TokenMalformed("session does not belong to subject")
        if session.is_expired(now):
            raise TokenExpired(str(session_id))

        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            raise PrincipalMissing(str(user_id))
        if not user.is_active:
            raise PrincipalInactive(str(user_id))

        return AuthContext(user=user, session=session)

    async def revoke(self, token: str, now: datetime | None = None) -> bool:
        """Revoke the session behind ``token``. Unknown, malformed or already revoked tokens are a no-op."""
        sid = read_session_id(token)
        if sid is None:
            return False
        try:
            session_id = UUID(sid)
        except ValueError:
            return False
        return await self._revoke_ids([session_id], ensure_utc(now) if now else utcnow()) > 0

    async def revoke_session(self, user_id: UUID, session_id: UUID, now: datetime | None = None) -> bool:
        """Revoke one of ``user_id``'s sessions. Returns False if there was nothing to revoke."""
        now = ensure_utc(now) if now else utcnow()
        result = await self.db.execute(
            update(UserSession)
            .where(
                UserSession.id == session_id,
                UserSession.user_id == user_id,
                UserSession.revoked_at.is_(None),
            )
            .values(revoked_at=now)
        )
        return result.rowcount > 0

    async def revoke_all(
        self,
        user_id: UUID,
        except_session_id: UUID | None = None,
        now: datetime | None = None,
    ) -> int:
        """Revoke every session of ``user_id`` except ``except_session_id``. Returns the count revoked."""
        now = ensure_utc(now) if now else utcnow()
        conditions = [UserSession.user_id == user_id, UserSession.revoked_at.is_(None)]
        if except_session_id is not None:
            conditions.append(UserSession.id != except_session_id)

        try:
            async with _session_locks.hold(user_id, timeout=settings.AUTH_TIMEOUT_SECONDS):
                result = await self.db.execute(
                    update(UserSession).where(*conditions).values(revoked_at=now)
                )
        except TimeoutError as e:
            raise InfraError("session list busy") from e
        return result.rowcount

    async def list_sessions(self, user_id: UUID, now: datetime | None = None) -> list[UserSession]:
        """Live sessions, most recently active first."""
        now = ensure_utc(now) if now else utcnow()
        result = await self.db.execute(
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
            )
            .order_by(UserSession.last_activity_at.desc())
        )
        return list(result.scalars().all())

    async def touch(self, session_id: UUID, now: datetime | None = None) -> None:
        now = ensure_utc(now) if now else utcnow()
        await self.db.execute(
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.revoked_at.is_(None))
            .values(last_activity_at=now)
        )

    async def refresh(
        self,
        token: str,
        user_agent: str,
        ip_address: str,
        now: datetime | None = None,
    ) -> IssuedToken:
        """Rotate a valid token: revoke its session and issue a fresh one."""
        context = await self.validate(token, now=now)
        await self._revoke_ids([context.session.id], ensure_utc(now) if now else utcnow())
        return await self.issue(
            context.user,
            user_agent,
            ip_address,
            remember_me=context.session.remember_me,
            risk_score=context.session.risk_score,
            is_suspicious=context.session.is_suspicious,
            now=now,
        )

    async def _live_sessions(self, user_id: UUID, now: datetime, for_update: bool = False) -> list[UserSession]:
        stmt = (
            select(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.revoked_at.is_(None),
                UserSession.expires_at > now,
            )
            .order_by(UserSession.issued_at.desc())
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _revoke_ids(self, session_ids: list[UUID], now: datetime) -> int:
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.id.in_(session_ids), UserSession.revoked_at.is_(None))
            .values(revoked_at=now)
        )
        return result.rowcount
