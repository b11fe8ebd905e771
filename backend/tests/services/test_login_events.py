"""Tests for the login event log and its statistics."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select

from conftest import create_user
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.services.geoip import GeoLocation
from jbs.services.login_events import LoginEventLog
from jbs.utils.time import utcnow

CHROME_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"
IPHONE_UA = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 Mobile/15E148 Safari/604.1"


@pytest.fixture
async def user(test_session):
    return await create_user(test_session, "events@example.com")


@pytest.mark.asyncio
async def test_append_enriches_event(test_session, user):
    log = LoginEventLog(test_session)

    event = await log.append(
        LoginEventType.LOGIN_SUCCESS,
        "127.0.0.1",
        IPHONE_UA,
        user_id=user.id,
        email="Events@Example.com",
        details={"sessionId": "abc"},
        risk_score=20,
    )
    await test_session.commit()

    assert event.id is not None
    assert event.email == "events@example.com"
    assert event.browser == "Safari"
    assert event.os == "iOS"
    assert event.is_mobile is True
    assert event.country is None
    assert event.details == {"sessionId": "abc"}
    assert event.risk_score == 20
    assert abs(event.timestamp - utcnow()) < timedelta(seconds=5)


@pytest.mark.asyncio
async def test_append_uses_geoip_for_public_addresses(test_session, user):
    geoip = MagicMock()
    geoip.lookup.return_value = GeoLocation(country="Portugal", region="Lisbon", city="Lisbon")

    event = await LoginEventLog(test_session, geoip=geoip).append(
        LoginEventType.LOGIN_SUCCESS, "203.0.113.5", CHROME_UA, user_id=user.id
    )

    geoip.lookup.assert_called_once_with("203.0.113.5")
    assert event.country == "Portugal"
    assert event.city == "Lisbon"


@pytest.mark.asyncio
async def test_append_without_user(test_session):
    event = await LoginEventLog(test_session).append(
        LoginEventType.LOGIN_FAILED, "127.0.0.1", "", email="ghost@example.com",
        details={"reason": "user_not_found"},
    )

    assert event.user_id is None
    assert event.user_agent == "Unknown"


@pytest.mark.asyncio
async def test_recent_window_is_newest_first(test_session, user):
    log = LoginEventLog(test_session)
    first = await log.append(LoginEventType.LOGIN_FAILED, "127.0.0.1", CHROME_UA, user_id=user.id)
    second = await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await test_session.commit()

    window = await log.recent_window(user.id, since=utcnow() - timedelta(hours=1))

    assert [e.id for e in window] == [second.id, first.id]


@pytest.mark.asyncio
async def test_recent_window_excludes_old_events(test_session, user):
    log = LoginEventLog(test_session)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await test_session.commit()

    window = await log.recent_window(user.id, since=utcnow() + timedelta(minutes=1))

    assert window == []


@pytest.mark.asyncio
async def test_counts_by_kind(test_session, user):
    log = LoginEventLog(test_session)
    for _ in range(3):
        await log.append(LoginEventType.LOGIN_FAILED, "127.0.0.1", CHROME_UA, user_id=user.id)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await test_session.commit()

    counts = await log.counts_by_kind(user.id)

    assert [(c.event_type, c.count) for c in counts] == [
        (LoginEventType.LOGIN_FAILED, 3),
        (LoginEventType.LOGIN_SUCCESS, 1),
    ]


@pytest.mark.asyncio
async def test_device_breakdown(test_session, user):
    log = LoginEventLog(test_session)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", IPHONE_UA, user_id=user.id)
    await test_session.commit()

    devices = await log.device_breakdown(user.id)

    assert [(d.browser, d.os, d.is_mobile, d.count) for d in devices] == [
        ("Chrome", "Windows", False, 2),
        ("Safari", "iOS", True, 1),
    ]


@pytest.mark.asyncio
async def test_geographic_breakdown_skips_unlocated_events(test_session, user):
    log = LoginEventLog(test_session)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    await test_session.commit()

    assert await log.geographic_breakdown(user.id) == []


@pytest.mark.asyncio
async def test_suspicious_events(test_session, user):
    log = LoginEventLog(test_session)
    await log.append(LoginEventType.LOGIN_SUCCESS, "127.0.0.1", CHROME_UA, user_id=user.id)
    flagged = await log.append(
        LoginEventType.SUSPICIOUS_ACTIVITY,
        "203.0.113.5",
        CHROME_UA,
        user_id=user.id,
        risk_score=65,
        is_suspicious=True,
    )
    await test_session.commit()

    events = await log.suspicious_events(user.id)

    assert [e.id for e in events] == [flagged.id]


@pytest.mark.asyncio
async def test_empty_details_stored_as_null(test_session, user):
    log = LoginEventLog(test_session)
    await log.append(LoginEventType.LOGOUT, "127.0.0.1", CHROME_UA, user_id=user.id)
    await test_session.commit()

    result = await test_session.execute(select(LoginEvent))
    (event,) = result.scalars().all()
    assert event.event_type == LoginEventType.LOGOUT
    assert event.details is None
