from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.api.deps import require_admin
from jbs.core.errors import not_found
from jbs.core.logging import LogHelper
from jbs.db.session import get_db
from jbs.models.user import User
from jbs.schemas.auth import RevokeSessionsResponse
from jbs.schemas.user import AccountStatusResponse, LockStatusResponse
from jbs.services.authentication import AuthService

router = APIRouter(prefix="/users", tags=["users"])

logger = LogHelper(__name__)


async def _get_user_or_404(service: AuthService, user_id: UUID) -> User:
    user = await service.credentials.get(user_id)
    if not user:
        raise not_found("User", {"user_id": str(user_id)})
    return user


@router.get("/{user_id}/lock-status", response_model=LockStatusResponse)
async def get_lock_status(
    user_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    service = AuthService(db)
    user = await _get_user_or_404(service, user_id)
    lock_status = await service.lockout.lock_status(user.id)
    return LockStatusResponse(
        user_id=user.id,
        email=user.email,
        is_locked=lock_status.is_locked,
        locked_until=lock_status.locked_until,
        failed_attempt_count=lock_status.failed_attempt_count,
        remaining_attempts=lock_status.remaining_attempts,
        retry_after_minutes=lock_status.retry_after_minutes,
    )


@router.post("/{user_id}/unlock", response_model=AccountStatusResponse)
async def unlock_user_account(
    user_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    """Unlock a user account by clearing the lock and failed login counter."""
    service = AuthService(db)
    user = await _get_user_or_404(service, user_id)
    await service.lockout.unlock(user.id)
    await db.commit()

    logger.info("Account unlocked", user_id=str(user.id), admin_id=str(current_user.id))
    return AccountStatusResponse(
        email=user.email,
        is_active=user.is_active,
        message=f"User account {user.email} unlocked successfully",
    )


@router.post("/{user_id}/deactivate", response_model=AccountStatusResponse)
async def deactivate_user(
    user_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    """Deactivate an account. Existing tokens stop working immediately."""
    service = AuthService(db)
    user = await _get_user_or_404(service, user_id)
    revoked = await service.tokens.revoke_all(user.id)
    user.is_active = False
    await db.commit()

    logger.info("Account deactivated", user_id=str(user.id), admin_id=str(current_user.id))
    return AccountStatusResponse(
        email=user.email,
        is_active=False,
        message=f"User account {user.email} deactivated",
        revoked_sessions=revoked,
    )


@router.post("/{user_id}/activate", response_model=AccountStatusResponse)
async def activate_user(
    user_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    service = AuthService(db)
    user = await _get_user_or_404(service, user_id)
    user.is_active = True
    await db.commit()

    logger.info("Account activated", user_id=str(user.id), admin_id=str(current_user.id))
    return AccountStatusResponse(
        email=user.email,
        is_active=True,
        message=f"User account {user.email} activated",
    )


@router.delete("/{user_id}/sessions", response_model=RevokeSessionsResponse)
async def revoke_user_sessions(
    user_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_admin)],
):
    """Sign a user out everywhere."""
    service = AuthService(db)
    user = await _get_user_or_404(service, user_id)
    revoked = await service.tokens.revoke_all(user.id)
    await db.commit()

    logger.info("Sessions revoked by admin", user_id=str(user.id), admin_id=str(current_user.id), count=revoked)
    return RevokeSessionsResponse(message=f"Revoked {revoked} sessions", revoked_sessions=revoked)
