"""
Login orchestration.

A login runs: lockout admission -> password check (time-boxed) -> lock
outcome -> risk assessment -> session issue -> event log. Every failure
path commits its events and counters before raising, so a rejected attempt
still leaves its trace even though the request ends in an error.

Usage:
    service = AuthService(db)
    result = await service.login(email, password, ClientInfo(ip, user_agent))
"""

import asyncio
from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import settings
from jbs.core.exceptions import (
    AccountInactive,
    AccountLocked,
    AuthenticationTimeout,
    BadPassword,
    CredentialError,
    CredentialNotFound,
    InfraError,
    UserTypeMismatch,
)
from jbs.core.logging import LogHelper
from jbs.models.login_event import LoginEventType
from jbs.models.user import User, UserRole
from jbs.services.credentials import CredentialStore, check_password
from jbs.services.lockout import LockoutPolicy
from jbs.services.login_events import LoginEventLog
from jbs.services.risk import RiskAssessment, RiskScorer
from jbs.services.tokens import AuthContext, IssuedToken, TokenService
from jbs.utils.time import utcnow

logger = LogHelper(__name__)


@dataclass(frozen=True)
class ClientInfo:
    ip_address: str
    user_agent: str


@dataclass(frozen=True)
class LoginResult:
    user: User
    issued: IssuedToken
    assessment: RiskAssessment


class AuthService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = LoginEventLog(db)
        self.tokens = TokenService(db)
        self.credentials = CredentialStore(db, self.tokens)
        self.lockout = LockoutPolicy(db)
        self.risk = RiskScorer(db)
        self.timeout = settings.AUTH_TIMEOUT_SECONDS
        self.lock_threshold = settings.RISK_LOCK_THRESHOLD

    async def _verify(self, email: str, password: str) -> User:
        try:
            return await asyncio.wait_for(self.credentials.verify(email, password), timeout=self.timeout)
        except TimeoutError as e:
            raise AuthenticationTimeout(f"credential check exceeded {self.timeout}s") from e

    async def login(
        self,
        email: str,
        password: str,
        client: ClientInfo,
        remember_me: bool = False,
        user_type: UserRole | None = None,
    ) -> LoginResult:
        """
        Authenticate and open a session.

        Raises:
            AccountLocked: lockout policy refused admission (no password check made)
            CredentialError: unknown account, wrong password or inactive account
            UserTypeMismatch: correct password but wrong login portal
            InfraError: lock state or event log unavailable, or verification timed out
        """
        email = email.strip().lower()
        known = await self.credentials.find_by_email(email)

        if known is not None:
            admission = await self.lockout.check_admission(known.id)
            if admission.fail_closed:
                raise InfraError("lock state unavailable")
            if not admission.allowed:
                await self.events.append(
                    LoginEventType.LOGIN_FAILED,
                    client.ip_address,
                    client.user_agent,
                    user_id=known.id,
                    email=email,
                    details={"reason": "account_locked"},
                )
                await self.db.commit()
                logger.warning("Login refused for locked account", user_id=str(known.id))
                raise AccountLocked(admission.retry_after)

        try:
            user = await self._verify(email, password)
        except AuthenticationTimeout:
            logger.error("Credential verification timed out", timeout=self.timeout)
            raise
        except CredentialError as e:
            await self._record_failure(e, known, email, client)
            raise

        if user_type is not None and user.role != user_type and user.role != UserRole.ADMIN:
            raise UserTypeMismatch(user.role.value)

        return await self._complete_login(user, client, remember_me)

    async def _record_failure(
        self,
        error: CredentialError,
        user: User | None,
        email: str,
        client: ClientInfo,
    ) -> None:
        details: dict = {"reason": error.reason}
        user_id = None
        if isinstance(error, BadPassword) and user is not None:
            user_id = user.id
            outcome = await self.lockout.record_outcome(
                user.id, success=False, ip_address=client.ip_address, user_agent=client.user_agent
            )
            details["attemptCount"] = outcome.failed_attempt_count
            details["remainingAttempts"] = outcome.remaining_attempts
        elif isinstance(error, AccountInactive) and user is not None:
            user_id = user.id

        await self.events.append(
            LoginEventType.LOGIN_FAILED,
            client.ip_address,
            client.user_agent,
            user_id=user_id,
            email=email,
            details=details,
        )
        await self.db.commit()

        if isinstance(error, CredentialNotFound):
            logger.info("Login failed for unknown account")
        else:
            logger.info("Login failed", user_id=str(user_id), reason=error.reason)

    async def _complete_login(self, user: User, client: ClientInfo, remember_me: bool) -> LoginResult:
        now = utcnow()

        # Scored against history only, before this login is appended
        assessment = await self.risk.assess(user.id, client.ip_address, client.user_agent, now=now)

        await self.lockout.record_outcome(
            user.id, success=True, ip_address=client.ip_address, user_agent=client.user_agent, now=now
        )
        issued = await self.tokens.issue(
            user,
            client.user_agent,
            client.ip_address,
            remember_me=remember_me,
            risk_score=assessment.risk_score,
            is_suspicious=assessment.is_suspicious,
            now=now,
        )
        await self.db.execute(update(User).where(User.id == user.id).values(last_login_at=now))

        await self.events.append(
            LoginEventType.LOGIN_SUCCESS,
            client.ip_address,
            client.user_agent,
            user_id=user.id,
            email=user.email,
            details={"sessionId": str(issued.session.id), "rememberMe": remember_me},
            risk_score=assessment.risk_score,
            is_suspicious=assessment.is_suspicious,
        )

        if assessment.is_suspicious:
            await self.events.append(
                LoginEventType.SUSPICIOUS_ACTIVITY,
                client.ip_address,
                client.user_agent,
                user_id=user.id,
                email=user.email,
                details=assessment.as_details(),
                risk_score=assessment.risk_score,
                is_suspicious=True,
            )
            logger.warning(
                "Suspicious login",
                user_id=str(user.id),
                risk_score=assessment.risk_score,
                reasons=assessment.reasons,
            )

        if self.lock_threshold is not None and assessment.risk_score >= self.lock_threshold:
            locked_until = await self.lockout.lock(
                user.id,
                reason="high_risk_login",
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                now=now,
            )
            await self.tokens.revoke_session(user.id, issued.session.id, now=now)
            await self.db.commit()
            raise AccountLocked(locked_until - now)

        await self.db.commit()
        logger.info("Login succeeded", user_id=str(user.id), risk_score=assessment.risk_score)
        return LoginResult(user=user, issued=issued, assessment=assessment)

    async def logout(self, context: AuthContext, client: ClientInfo) -> None:
        await self.tokens.revoke_session(context.user.id, context.session.id)
        await self.events.append(
            LoginEventType.LOGOUT,
            client.ip_address,
            client.user_agent,
            user_id=context.user.id,
            email=context.user.email,
            details={"sessionId": str(context.session.id)},
        )
        await self.db.commit()

    async def refresh(self, token: str, client: ClientInfo) -> IssuedToken:
        issued = await self.tokens.refresh(token, client.user_agent, client.ip_address)
        await self.db.commit()
        return issued

    async def verify_current_password(self, context: AuthContext, password: str, client: ClientInfo) -> bool:
        """
        Re-check the password of a signed-in user before a sensitive change.

        Wrong guesses count toward the account lockout, so a stolen token
        does not allow unlimited attempts.

        Raises:
            AccountLocked: account is locked; the password is not compared
            InfraError: lock state unavailable or the check timed out
        """
        user = context.user
        admission = await self.lockout.check_admission(user.id)
        if admission.fail_closed:
            raise InfraError("lock state unavailable")
        if not admission.allowed:
            raise AccountLocked(admission.retry_after)

        try:
            matches = await asyncio.wait_for(check_password(password, user.password_hash), timeout=self.timeout)
        except TimeoutError as e:
            raise AuthenticationTimeout(f"password check exceeded {self.timeout}s") from e
        if matches:
            return True

        outcome = await self.lockout.record_outcome(
            user.id, success=False, ip_address=client.ip_address, user_agent=client.user_agent
        )
        await self.events.append(
            LoginEventType.LOGIN_FAILED,
            client.ip_address,
            client.user_agent,
            user_id=user.id,
            email=user.email,
            details={
                "reason": "invalid_current_password",
                "sessionId": str(context.session.id),
                "attemptCount": outcome.failed_attempt_count,
                "remainingAttempts": outcome.remaining_attempts,
            },
        )
        await self.db.commit()
        logger.info("Current password check failed", user_id=str(user.id))
        return False

    async def change_password(self, context: AuthContext, new_password: str, client: ClientInfo) -> int:
        """Change the password, keeping only the calling session alive. Returns sessions revoked."""
        async with self.credentials.password_lock(context.user.id):
            revoked = await self.credentials.change_password(
                context.user, new_password, keep_session_id=context.session.id
            )
            await self.events.append(
                LoginEventType.PASSWORD_CHANGED,
                client.ip_address,
                client.user_agent,
                user_id=context.user.id,
                email=context.user.email,
                details={"revokedSessions": revoked},
            )
            await self.db.commit()
        logger.info("Password changed", user_id=str(context.user.id), revoked_sessions=revoked)
        return revoked

    async def request_password_reset(self, email: str) -> str | None:
        """Returns the clear reset token for delivery, or None when there is no eligible account."""
        issued = await self.credentials.create_reset_token(email)
        if issued is None:
            return None
        user, token = issued
        await self.db.commit()
        logger.info("Password reset requested", user_id=str(user.id))
        return token

    async def reset_password(self, token: str, new_password: str, client: ClientInfo) -> User:
        owner = await self.credentials.check_reset_token(token)
        async with self.credentials.password_lock(owner.id):
            # Token is checked again inside the lock so it is consumed once
            user = await self.credentials.reset_password(token, new_password)
            # Reset also clears any lockout
            await self.lockout.unlock(user.id)
            await self.events.append(
                LoginEventType.PASSWORD_RESET,
                client.ip_address,
                client.user_agent,
                user_id=user.id,
                email=user.email,
            )
            await self.db.commit()
        logger.info("Password reset completed", user_id=str(user.id))
        return user
