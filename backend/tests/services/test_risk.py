"""Tests for login risk scoring."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import create_user
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.services.login_events import LoginEventLog
from jbs.services.risk import (
    REASON_FAILED_ATTEMPTS,
    REASON_NEW_DEVICE,
    REASON_NEW_IP,
    REASON_RAPID_LOGINS,
    REASON_UNUSUAL_TIME,
    RiskPolicy,
    RiskScorer,
    score_window,
)

KNOWN_IP = "198.51.100.7"
KNOWN_UA = "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_0) Safari/605.1.15"
NEW_IP = "203.0.113.99"
NEW_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Firefox/121.0"

POLICY = RiskPolicy()


def _event(kind: LoginEventType, at: datetime, ip: str = KNOWN_IP, ua: str = KNOWN_UA) -> LoginEvent:
    return LoginEvent(event_type=kind, timestamp=at, ip_address=ip, user_agent=ua)


def _at(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 10, hour, minute, tzinfo=timezone.utc)


def test_burst_of_failures_from_new_ip_and_device_scores_65():
    now = _at(13)
    events = [_event(LoginEventType.LOGIN_FAILED, now - timedelta(minutes=10 * i)) for i in range(1, 6)]

    result = score_window(events, NEW_IP, NEW_UA, now, POLICY)

    assert result.risk_score == 65
    assert result.is_suspicious is True
    assert result.reasons == [REASON_FAILED_ATTEMPTS, REASON_NEW_IP, REASON_NEW_DEVICE]


def test_first_login_at_14_does_not_trigger_unusual_time():
    result = score_window([], NEW_IP, NEW_UA, _at(14), POLICY)

    assert REASON_UNUSUAL_TIME not in result.reasons
    assert result.risk_score == 35
    assert result.is_suspicious is False


def test_first_login_at_night_is_unusual():
    result = score_window([], NEW_IP, NEW_UA, _at(2), POLICY)

    assert REASON_UNUSUAL_TIME in result.reasons
    assert result.risk_score == 45


def test_four_failures_do_not_count_as_burst():
    now = _at(13)
    events = [_event(LoginEventType.LOGIN_FAILED, now - timedelta(minutes=i)) for i in range(1, 5)]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert result.risk_score == 0
    assert result.reasons == []


def test_known_ip_and_device_score_zero():
    now = _at(12, 30)
    events = [_event(LoginEventType.LOGIN_SUCCESS, now - timedelta(hours=3))]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert result.risk_score == 0
    assert result.is_suspicious is False


def test_rapid_logins():
    now = _at(13)
    events = [
        _event(LoginEventType.LOGIN_SUCCESS, now - timedelta(minutes=m))
        for m in (10, 25, 40)
    ]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert result.reasons == [REASON_RAPID_LOGINS]
    assert result.risk_score == 25


def test_successes_older_than_an_hour_are_not_rapid():
    now = _at(13)
    events = [
        _event(LoginEventType.LOGIN_SUCCESS, now - timedelta(minutes=m))
        for m in (61, 90, 120)
    ]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert REASON_RAPID_LOGINS not in result.reasons


def test_unusual_time_uses_mean_success_hour():
    now = _at(23)
    events = [
        _event(LoginEventType.LOGIN_SUCCESS, _at(9)),
        _event(LoginEventType.LOGIN_SUCCESS, _at(10)),
    ]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert result.reasons == [REASON_UNUSUAL_TIME]
    assert result.risk_score == 10


def test_events_outside_window_are_ignored():
    now = _at(13)
    stale = now - timedelta(hours=25)
    events = [_event(LoginEventType.LOGIN_FAILED, stale - timedelta(minutes=i)) for i in range(6)]

    result = score_window(events, KNOWN_IP, KNOWN_UA, now, POLICY)

    assert REASON_FAILED_ATTEMPTS not in result.reasons
    assert REASON_NEW_IP in result.reasons
    assert REASON_NEW_DEVICE in result.reasons


def test_scoring_is_deterministic():
    now = _at(13)
    events = [
        _event(LoginEventType.LOGIN_FAILED, now - timedelta(minutes=5)),
        _event(LoginEventType.LOGIN_SUCCESS, now - timedelta(minutes=30)),
    ]

    first = score_window(events, NEW_IP, KNOWN_UA, now, POLICY)
    second = score_window(list(reversed(events)), NEW_IP, KNOWN_UA, now, POLICY)

    assert first == second


def test_custom_policy_threshold():
    policy = RiskPolicy(suspicious_threshold=30)

    result = score_window([], NEW_IP, NEW_UA, _at(14), policy)

    assert result.risk_score == 35
    assert result.is_suspicious is True


def test_as_details_uses_camel_case_keys():
    result = score_window([], NEW_IP, NEW_UA, _at(14), POLICY)

    assert result.as_details() == {
        "riskScore": 35,
        "isSuspicious": False,
        "reasons": [REASON_NEW_IP, REASON_NEW_DEVICE],
    }


@pytest.mark.asyncio
async def test_scorer_reads_recorded_events(test_session):
    user = await create_user(test_session, "risky@example.com")
    log = LoginEventLog(test_session)
    for _ in range(5):
        await log.append(LoginEventType.LOGIN_FAILED, KNOWN_IP, KNOWN_UA, user_id=user.id)
    await test_session.commit()

    result = await RiskScorer(test_session).assess(user.id, NEW_IP, NEW_UA)

    assert REASON_FAILED_ATTEMPTS in result.reasons
    assert REASON_NEW_IP in result.reasons
    assert REASON_NEW_DEVICE in result.reasons
    assert result.is_suspicious is True


@pytest.mark.asyncio
async def test_scorer_ignores_other_users(test_session):
    user = await create_user(test_session, "quiet@example.com")
    other = await create_user(test_session, "noisy@example.com")
    log = LoginEventLog(test_session)
    for _ in range(5):
        await log.append(LoginEventType.LOGIN_FAILED, KNOWN_IP, KNOWN_UA, user_id=other.id)
    await test_session.commit()

    result = await RiskScorer(test_session).assess(user.id, KNOWN_IP, KNOWN_UA)

    assert REASON_FAILED_ATTEMPTS not in result.reasons
    assert REASON_NEW_IP in result.reasons
