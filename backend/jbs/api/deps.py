from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.errors import forbidden, unauthorized
from jbs.db.session import get_db
from jbs.models.user import User, UserRole
from jbs.services.authentication import ClientInfo
from jbs.services.rate_limit import check_ip_rate_limit
from jbs.services.tokens import AuthContext, TokenService
from jbs.utils.request import get_client_ip, get_user_agent

# auto_error=False so a missing header gets our 401 envelope instead of FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_auth_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AuthContext:
    """
    Resolve the bearer token to a principal.

    Token failures raise ``TokenError`` subclasses, rendered as 401
    "Invalid token." or "Token expired." by the exception handlers.
    """
    if credentials is None or not credentials.credentials:
        raise unauthorized()
    return await TokenService(db).validate(credentials.credentials)


async def get_current_user(
    context: Annotated[AuthContext, Depends(get_auth_context)],
) -> User:
    return context.user


def require_role(role: UserRole, message: str):
    """Dependency factory for role-gated routes."""

    async def check_role(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if current_user.role != role:
            raise forbidden(message)
        return current_user

    return check_role


require_owner = require_role(UserRole.OWNER, "Access denied. Owner privileges required.")
require_admin = require_role(UserRole.ADMIN, "Access denied. Admin privileges required.")
require_student = require_role(UserRole.STUDENT, "Access denied. Student privileges required.")


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(ip_address=get_client_ip(request), user_agent=get_user_agent(request))


async def enforce_ip_rate_limit(
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
) -> None:
    """Reject unauthenticated sign-in traffic from addresses with too many recent failures."""
    await check_ip_rate_limit(db, client.ip_address)
