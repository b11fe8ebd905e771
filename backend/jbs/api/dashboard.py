from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.api.deps import require_owner, require_student
from jbs.db.session import get_db
from jbs.models.user import User
from jbs.schemas.dashboard import DashboardResponse
from jbs.schemas.user import UserResponse
from jbs.services.tokens import TokenService

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


async def _dashboard(db: AsyncSession, user: User) -> DashboardResponse:
    sessions = await TokenService(db).list_sessions(user.id)
    return DashboardResponse(
        user=UserResponse.from_user(user),
        active_sessions=len(sessions),
        suspicious_sessions=sum(1 for s in sessions if s.is_suspicious),
        last_login_at=user.last_login_at,
    )


@router.get("/owner", response_model=DashboardResponse)
async def owner_dashboard(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_owner)],
):
    return await _dashboard(db, current_user)


@router.get("/student", response_model=DashboardResponse)
async def student_dashboard(
    db: Annotated[AsyncSession, Depends(get_db)],
    current_user: Annotated[User, Depends(require_student)],
):
    return await _dashboard(db, current_user)
