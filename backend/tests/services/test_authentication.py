"""Tests for the login flow orchestration."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import TEST_PASSWORD, TEST_USER_AGENT, create_user
from jbs.core.exceptions import (
    AccountInactive,
    AccountLocked,
    AuthenticationTimeout,
    BadPassword,
    CredentialNotFound,
    InfraError,
    ResetTokenInvalid,
    TokenRevoked,
    UserTypeMismatch,
)
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.models.user import User, UserRole
from jbs.models.user_session import UserSession
from jbs.services.authentication import AuthService, ClientInfo
from jbs.services.credentials import CredentialStore
from jbs.services.risk import REASON_NEW_DEVICE, REASON_NEW_IP
from jbs.services.tokens import AuthContext, TokenService

CLIENT = ClientInfo(ip_address="198.51.100.20", user_agent=TEST_USER_AGENT)


async def _events(session, kind: LoginEventType | None = None) -> list[LoginEvent]:
    stmt = select(LoginEvent).order_by(LoginEvent.id)
    if kind is not None:
        stmt = stmt.where(LoginEvent.event_type == kind)
    result = await session.execute(stmt)
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_successful_login(test_session):
    user = await create_user(test_session, "flow@example.com")

    result = await AuthService(test_session).login("Flow@Example.com", TEST_PASSWORD, CLIENT)

    assert result.user.id == user.id
    assert result.issued.token
    assert REASON_NEW_IP in result.assessment.reasons
    assert REASON_NEW_DEVICE in result.assessment.reasons

    (event,) = await _events(test_session, LoginEventType.LOGIN_SUCCESS)
    assert event.user_id == user.id
    assert event.risk_score == result.assessment.risk_score
    assert event.details["sessionId"] == str(result.issued.session.id)

    await test_session.refresh(user)
    assert user.last_login_at is not None


@pytest.mark.asyncio
async def test_second_login_from_same_client_is_not_new(test_session):
    await create_user(test_session, "repeat@example.com")
    service = AuthService(test_session)

    await service.login("repeat@example.com", TEST_PASSWORD, CLIENT)
    result = await service.login("repeat@example.com", TEST_PASSWORD, CLIENT)

    assert REASON_NEW_IP not in result.assessment.reasons
    assert REASON_NEW_DEVICE not in result.assessment.reasons


@pytest.mark.asyncio
async def test_unknown_email_is_logged_without_user(test_session):
    with pytest.raises(CredentialNotFound):
        await AuthService(test_session).login("nobody@example.com", TEST_PASSWORD, CLIENT)

    (event,) = await _events(test_session, LoginEventType.LOGIN_FAILED)
    assert event.user_id is None
    assert event.email == "nobody@example.com"
    assert event.details == {"reason": "user_not_found"}


@pytest.mark.asyncio
async def test_bad_password_counts_attempts(test_session):
    user = await create_user(test_session, "counted@example.com")

    with pytest.raises(BadPassword):
        await AuthService(test_session).login("counted@example.com", "Wrong!Pass1", CLIENT)

    (event,) = await _events(test_session, LoginEventType.LOGIN_FAILED)
    assert event.user_id == user.id
    assert event.details == {"reason": "invalid_password", "attemptCount": 1, "remainingAttempts": 4}


@pytest.mark.asyncio
async def test_inactive_account_does_not_count_attempts(test_session):
    user = await create_user(test_session, "dormant@example.com", is_active=False)

    with pytest.raises(AccountInactive):
        await AuthService(test_session).login("dormant@example.com", TEST_PASSWORD, CLIENT)

    await test_session.refresh(user)
    assert user.failed_attempt_count == 0


@pytest.mark.asyncio
async def test_lockout_after_five_failures(test_session):
    await create_user(test_session, "brute@example.com")
    service = AuthService(test_session)

    for _ in range(5):
        with pytest.raises(BadPassword):
            await service.login("brute@example.com", "Wrong!Pass1", CLIENT)

    # Correct password no longer helps
    with pytest.raises(AccountLocked) as exc_info:
        await service.login("brute@example.com", TEST_PASSWORD, CLIENT)
    assert exc_info.value.retry_after_minutes == 15

    assert len(await _events(test_session, LoginEventType.ACCOUNT_LOCKED)) == 1
    failed = await _events(test_session, LoginEventType.LOGIN_FAILED)
    assert len(failed) == 6
    assert failed[-1].details == {"reason": "account_locked"}


@pytest.mark.asyncio
async def test_suspicious_login_is_flagged(test_session):
    user = await create_user(test_session, "targeted@example.com")
    service = AuthService(test_session)
    attacker = ClientInfo(ip_address="203.0.113.66", user_agent="python-requests/2.31")

    for _ in range(4):
        with pytest.raises(BadPassword):
            await service.login("targeted@example.com", "Wrong!Pass1", CLIENT)
    await service.lockout.unlock(user.id)
    with pytest.raises(BadPassword):
        await service.login("targeted@example.com", "Wrong!Pass1", CLIENT)

    result = await service.login("targeted@example.com", TEST_PASSWORD, attacker)

    assert result.assessment.is_suspicious is True
    assert result.assessment.risk_score >= 65
    assert result.issued.session.is_suspicious is True
    (flag,) = await _events(test_session, LoginEventType.SUSPICIOUS_ACTIVITY)
    assert flag.details["riskScore"] == result.assessment.risk_score


@pytest.mark.asyncio
async def test_high_risk_login_locks_when_threshold_set(test_session):
    user = await create_user(test_session, "locked-by-risk@example.com")
    service = AuthService(test_session)
    service.lock_threshold = 30

    with pytest.raises(AccountLocked):
        await service.login("locked-by-risk@example.com", TEST_PASSWORD, CLIENT)

    assert await service.tokens.list_sessions(user.id) == []
    (event,) = await _events(test_session, LoginEventType.ACCOUNT_LOCKED)
    assert event.details == {"reason": "high_risk_login"}


@pytest.mark.asyncio
async def test_user_type_mismatch(test_session):
    await create_user(test_session, "portal@example.com", UserRole.STUDENT)

    with pytest.raises(UserTypeMismatch) as exc_info:
        await AuthService(test_session).login(
            "portal@example.com", TEST_PASSWORD, CLIENT, user_type=UserRole.OWNER
        )
    assert exc_info.value.actual_role == "student"


@pytest.mark.asyncio
async def test_admin_may_use_any_portal(test_session):
    await create_user(test_session, "root@example.com", UserRole.ADMIN)

    result = await AuthService(test_session).login(
        "root@example.com", TEST_PASSWORD, CLIENT, user_type=UserRole.STUDENT
    )

    assert result.user.role == UserRole.ADMIN


class _UnavailableSession:
    """Stands in for a session whose database connection has gone away."""

    async def execute(self, *args, **kwargs):
        raise SQLAlchemyError("connection lost")


@pytest.mark.asyncio
async def test_unreadable_lock_state_fails_closed(test_session, monkeypatch):
    await create_user(test_session, "closed@example.com")
    service = AuthService(test_session)
    service.lockout.db = _UnavailableSession()
    verify = AsyncMock()
    monkeypatch.setattr(service.credentials, "verify", verify)

    with pytest.raises(InfraError):
        await service.login("closed@example.com", TEST_PASSWORD, CLIENT)

    verify.assert_not_called()
    assert await _events(test_session, LoginEventType.LOGIN_SUCCESS) == []


@pytest.mark.asyncio
async def test_slow_credential_check_times_out(test_session, monkeypatch):
    user = await create_user(test_session, "slow@example.com")
    service = AuthService(test_session)
    service.timeout = 0.05

    async def slow_verify(email, password):
        await asyncio.sleep(5)

    monkeypatch.setattr(service.credentials, "verify", slow_verify)

    with pytest.raises(AuthenticationTimeout):
        await service.login("slow@example.com", TEST_PASSWORD, CLIENT)

    await test_session.refresh(user)
    assert user.failed_attempt_count == 0
    assert await _events(test_session, LoginEventType.LOGIN_SUCCESS) == []


@pytest.mark.asyncio
async def test_logout_revokes_session(test_session):
    await create_user(test_session, "leaver@example.com")
    service = AuthService(test_session)
    result = await service.login("leaver@example.com", TEST_PASSWORD, CLIENT)
    context = await service.tokens.validate(result.issued.token)

    await service.logout(context, CLIENT)

    with pytest.raises(TokenRevoked):
        await service.tokens.validate(result.issued.token)
    assert len(await _events(test_session, LoginEventType.LOGOUT)) == 1


@pytest.mark.asyncio
async def test_password_reset_unlocks_account(test_session):
    user = await create_user(test_session, "forgetful@example.com")
    service = AuthService(test_session)
    for _ in range(5):
        with pytest.raises(BadPassword):
            await service.login("forgetful@example.com", "Wrong!Pass1", CLIENT)

    token = await service.request_password_reset("forgetful@example.com")
    await service.reset_password(token, "Brand!New2Pass", CLIENT)

    result = await service.login("forgetful@example.com", "Brand!New2Pass", CLIENT)
    assert result.user.id == user.id
    assert len(await _events(test_session, LoginEventType.PASSWORD_RESET)) == 1

    with pytest.raises(ResetTokenInvalid):
        await service.reset_password(token, "Another!New3Pass", CLIENT)


@pytest.mark.asyncio
async def test_reset_request_for_unknown_email(test_session):
    assert await AuthService(test_session).request_password_reset("unknown@example.com") is None


@pytest.mark.asyncio
async def test_concurrent_password_changes_keep_both_in_history(test_engine, test_session):
    user = await create_user(test_session, "racer@example.com")
    tokens = TokenService(test_session)
    first = await tokens.issue(user, TEST_USER_AGENT, "198.51.100.1")
    second = await tokens.issue(user, TEST_USER_AGENT, "198.51.100.2")
    await test_session.commit()
    sessionmaker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def change(session_id, new_password):
        async with sessionmaker() as db:
            context = AuthContext(user=await db.get(User, user.id), session=await db.get(UserSession, session_id))
            await AuthService(db).change_password(context, new_password, CLIENT)

    await asyncio.gather(
        change(first.session.id, "RaceAlpha!11"),
        change(second.session.id, "RaceBravo!22"),
    )

    await test_session.refresh(user)
    store = CredentialStore(test_session)
    for password in (TEST_PASSWORD, "RaceAlpha!11", "RaceBravo!22"):
        assert await store.is_password_reused(user, password) is True
    assert len(await _events(test_session, LoginEventType.PASSWORD_CHANGED)) == 2
