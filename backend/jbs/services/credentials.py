"""
Credential store: account lookup, password verification and password changes.

Password hashing runs in a worker thread so bcrypt never blocks the event
loop. Verification failures are raised as distinct ``CredentialError``
subclasses; collapsing them into one client-facing message is the HTTP
layer's job.
"""

import asyncio
import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import settings
from jbs.core.exceptions import (
    AccountInactive,
    BadPassword,
    CredentialNotFound,
    InfraError,
    PasswordPolicyError,
    PasswordReusedError,
    RegistrationError,
    ResetTokenInvalid,
)
from jbs.core.locks import get_keyed_lock
from jbs.core.security import (
    dummy_verify,
    generate_reset_token,
    get_password_hash,
    hash_reset_token,
    verify_password,
)
from jbs.models.password_history import PasswordHistoryEntry
from jbs.models.user import User, UserRole
from jbs.services.tokens import TokenService
from jbs.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PASSWORD_LENGTH = 128
SPECIAL_CHARACTERS = "!@#$%^&*()_+-=[]{}|;:,.<>?/~`'\"\\"
USERNAME_MAX_LENGTH = 30

_password_locks = get_keyed_lock("credentials")


def validate_password_complexity(
    password: str,
    user_email: str | None = None,
) -> tuple[bool, str]:
    """
    Validate password meets complexity requirements.

    Requirements:
    - At least PASSWORD_MIN_LENGTH characters (8 by default)
    - Maximum 128 characters
    - At least one uppercase letter, one lowercase letter, one number
      and one special character
    - Cannot contain the local part of the user's email (if provided)

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(password) < settings.PASSWORD_MIN_LENGTH:
        return False, f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long"

    if len(password) > MAX_PASSWORD_LENGTH:
        return False, f"Password must not exceed {MAX_PASSWORD_LENGTH} characters"

    if user_email:
        email_username = user_email.split("@")[0].lower()
        if email_username and len(email_username) >= 3 and email_username in password.lower():
            return False, "Password cannot contain your email username"

    if not any(c.isupper() for c in password):
        return False, "Password must contain at least one uppercase letter (A-Z)"

    if not any(c.islower() for c in password):
        return False, "Password must contain at least one lowercase letter (a-z)"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one number (0-9)"

    if not any(c in SPECIAL_CHARACTERS for c in password):
        return False, "Password must contain at least one special character (!@#$%^&* etc.)"

    return True, ""


def split_full_name(full_name: str) -> tuple[str, str]:
    parts = full_name.strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


async def check_password(plain_password: str, hashed_password: str) -> bool:
    return await asyncio.to_thread(verify_password, plain_password, hashed_password)


async def hash_password(plain_password: str) -> str:
    return await asyncio.to_thread(get_password_hash, plain_password)


class CredentialStore:
    def __init__(self, db: AsyncSession, tokens: TokenService | None = None):
        self.db = db
        self.tokens = tokens or TokenService(db)
        self.history_size = settings.PASSWORD_HISTORY_SIZE
        self.lock_timeout = settings.AUTH_TIMEOUT_SECONDS

    async def get(self, user_id: UUID) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def find_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def verify(self, email: str, password: str) -> User:
        """
        Verify an email / password pair.

        Raises:
            CredentialNotFound: no account for the email
            AccountInactive: account deactivated
            BadPassword: password does not match
        """
        user = await self.find_by_email(email)
        if user is None:
            # Same bcrypt cost as a real comparison so response time does not
            # reveal whether the account exists
            await asyncio.to_thread(dummy_verify)
            raise CredentialNotFound(email)

        if not user.is_active:
            await asyncio.to_thread(dummy_verify)
            raise AccountInactive(str(user.id))

        if not await check_password(password, user.password_hash):
            raise BadPassword(str(user.id))

        return user

    async def register(
        self,
        role: UserRole,
        email: str,
        password: str,
        full_name: str,
        city: str | None = None,
        phone: str | None = None,
        address: str | None = None,
        business_name: str | None = None,
        institution: str | None = None,
    ) -> User:
        """
        Create a student or owner account.

        Raises:
            PasswordPolicyError: password too weak
            RegistrationError: email (or business name) already registered
        """
        email = email.strip().lower()
        is_valid, error_msg = validate_password_complexity(password, email)
        if not is_valid:
            raise PasswordPolicyError(error_msg)

        if await self.find_by_email(email):
            raise RegistrationError("Email already registered", "email")

        if role == UserRole.OWNER and business_name:
            result = await self.db.execute(
                select(User.id).where(
                    func.lower(User.business_name) == business_name.strip().lower(),
                    User.role == UserRole.OWNER,
                )
            )
            if result.first():
                raise RegistrationError("Business name already registered", "business_name")

        first_name, last_name = split_full_name(full_name)
        now = utcnow()
        user = User(
            email=email,
            username=await self._generate_username(email),
            password_hash=await hash_password(password),
            role=role,
            is_active=True,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            city=city,
            address=address,
            business_name=business_name.strip() if business_name else None,
            institution=institution,
            failed_attempt_count=0,
            password_changed_at=now,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent sign-up for the same email
            raise RegistrationError("Email already registered", "email") from e

        logger.info(f"Registered {role.value} account {user.id}")
        return user

    async def _generate_username(self, email: str) -> str:
        base = email.split("@")[0][: USERNAME_MAX_LENGTH - 5]
        while True:
            candidate = f"{base}_{secrets.randbelow(10000):04d}"
            result = await self.db.execute(select(User.id).where(User.username == candidate))
            if result.first() is None:
                return candidate

    async def _recent_hashes(self, user_id: UUID) -> list[PasswordHistoryEntry]:
        result = await self.db.execute(
            select(PasswordHistoryEntry)
            .where(PasswordHistoryEntry.user_id == user_id)
            .order_by(PasswordHistoryEntry.changed_at.desc(), PasswordHistoryEntry.id.desc())
        )
        return list(result.scalars().all())

    async def is_password_reused(self, user: User, password: str, current_hash: str | None = None) -> bool:
        """
        True if ``password`` is among the last ``history_size`` passwords.

        The current password counts as one of them, so only the
        ``history_size - 1`` most recent previous hashes are compared.
        """
        if await check_password(password, current_hash or user.password_hash):
            return True
        history = await self._recent_hashes(user.id)
        for entry in history[: self.history_size - 1]:
            if await check_password(password, entry.password_hash):
                return True
        return False

    @asynccontextmanager
    async def password_lock(self, user_id: UUID) -> AsyncIterator[None]:
        """
        Serialise password writes for one account.

        Callers hold it across ``change_password`` or ``reset_password`` and
        their own commit, so the next writer reads the committed hash.

        Raises:
            InfraError: lock not acquired within ``AUTH_TIMEOUT_SECONDS``
        """
        try:
            async with _password_locks.hold(user_id, timeout=self.lock_timeout):
                yield
        except TimeoutError as e:
            raise InfraError("credential store busy") from e

    async def change_password(
        self,
        user: User,
        new_password: str,
        keep_session_id: UUID | None = None,
        now: datetime | None = None,
    ) -> int:
        """
        Replace the password and revoke every other session.

        The previous hash moves into the history. Together with the current
        hash the history covers the last ``PASSWORD_HISTORY_SIZE`` passwords.
        Concurrent callers must hold ``password_lock``.

        Returns:
            Number of sessions revoked

        Raises:
            PasswordPolicyError: password too weak
            PasswordReusedError: password is current or recently used
        """
        now = ensure_utc(now) if now else utcnow()
        is_valid, error_msg = validate_password_complexity(new_password, user.email)
        if not is_valid:
            raise PasswordPolicyError(error_msg)

        # Re-read under a row lock; the caller's copy may predate another change
        result = await self.db.execute(
            select(User.password_hash).where(User.id == user.id).with_for_update()
        )
        current_hash = result.scalar_one()

        if await self.is_password_reused(user, new_password, current_hash=current_hash):
            raise PasswordReusedError(
                f"Password was used recently. Choose one not among your last {self.history_size} passwords."
            )

        self.db.add(PasswordHistoryEntry(user_id=user.id, password_hash=current_hash, changed_at=now))
        await self.db.flush()

        history = await self._recent_hashes(user.id)
        stale = [entry.id for entry in history[max(self.history_size - 1, 0):]]
        if stale:
            await self.db.execute(delete(PasswordHistoryEntry).where(PasswordHistoryEntry.id.in_(stale)))

        new_hash = await hash_password(new_password)
        await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(password_hash=new_hash, password_changed_at=now)
        )

        revoked = await self.tokens.revoke_all(user.id, except_session_id=keep_session_id, now=now)
        logger.info(f"Password changed for {user.id}, {revoked} other sessions revoked")
        return revoked

    async def create_reset_token(self, email: str, now: datetime | None = None) -> tuple[User, str] | None:
        """
        Issue a single-use password reset token.

        Only the SHA-256 digest is stored. Returns None for unknown or
        inactive accounts; callers must not reveal the difference.
        """
        now = ensure_utc(now) if now else utcnow()
        user = await self.find_by_email(email)
        if user is None or not user.is_active:
            return None

        token = generate_reset_token()
        user.reset_token_hash = hash_reset_token(token)
        user.reset_token_expires_at = now + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        await self.db.flush()
        return user, token

    async def check_reset_token(self, token: str, now: datetime | None = None) -> User:
        """
        Resolve a reset token to its account without consuming it.

        Raises:
            ResetTokenInvalid: token unknown, already used or expired
        """
        now = ensure_utc(now) if now else utcnow()
        result = await self.db.execute(select(User).where(User.reset_token_hash == hash_reset_token(token)))
        user = result.scalar_one_or_none()
        if (
            user is None
            or not user.is_active
            or user.reset_token_expires_at is None
            or user.reset_token_expires_at <= now
        ):
            raise ResetTokenInvalid("Invalid or expired reset token")
        return user

    async def reset_password(self, token: str, new_password: str, now: datetime | None = None) -> User:
        """
        Set a new password using a reset token and revoke all sessions.

        Raises:
            ResetTokenInvalid: token unknown, already used or expired
            PasswordPolicyError: password too weak
            PasswordReusedError: password is current or recently used
        """
        now = ensure_utc(now) if now else utcnow()
        user = await self.check_reset_token(token, now=now)
        await self.change_password(user, new_password, now=now)
        await self.db.execute(
            update(User)
            .where(User.id == user.id)
            .values(reset_token_hash=None, reset_token_expires_at=None)
        )
        return user
