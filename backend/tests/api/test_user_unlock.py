import uuid

import pytest

from conftest import auth_headers
from jbs.services.lockout import LockoutPolicy


async def _lock(test_session, user):
    policy = LockoutPolicy(test_session)
    for _ in range(5):
        await policy.record_outcome(user.id, success=False, ip_address="127.0.0.1")
    await test_session.commit()
    return policy


@pytest.mark.asyncio
async def test_get_lock_status_unlocked(client, student_user, admin_token):
    """Test getting lock status for unlocked user."""
    response = await client.get(
        f"/api/users/{student_user.id}/lock-status",
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["isLocked"] is False
    assert data["remainingAttempts"] == 5
    assert data["retryAfterMinutes"] is None


@pytest.mark.asyncio
async def test_get_lock_status_locked(client, student_user, test_session, admin_token):
    """Test getting lock status for locked user."""
    await _lock(test_session, student_user)

    response = await client.get(
        f"/api/users/{student_user.id}/lock-status",
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["isLocked"] is True
    assert response.json()["retryAfterMinutes"] == 15


@pytest.mark.asyncio
async def test_unlock_user(client, student_user, test_session, admin_token):
    """Test unlocking a locked user."""
    policy = await _lock(test_session, student_user)
    assert (await policy.check_admission(student_user.id)).allowed is False

    response = await client.post(
        f"/api/users/{student_user.id}/unlock",
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 200
    assert response.json()["success"] is True

    assert (await policy.check_admission(student_user.id)).allowed is True


@pytest.mark.asyncio
async def test_unlock_unknown_user(client, admin_token):
    response = await client.post(
        f"/api/users/{uuid.uuid4()}/unlock",
        headers=auth_headers(admin_token),
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_unlock_requires_admin(client, student_user, owner_token):
    response = await client.post(
        f"/api/users/{student_user.id}/unlock",
        headers=auth_headers(owner_token),
    )
    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Access denied. Admin privileges required."
