from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.api.deps import enforce_ip_rate_limit, get_auth_context, get_client_info, get_current_user, security
from jbs.core.config import settings
from jbs.core.errors import unauthorized, validation_error
from jbs.db.session import get_db
from jbs.models.login_event import LoginEventType
from jbs.models.user import User, UserRole
from jbs.schemas.analytics import (
    AnalyticsResponse,
    DeviceCountResponse,
    KindCountResponse,
    LocationCountResponse,
    SecurityInsightsResponse,
    SuspiciousEventResponse,
)
from jbs.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ChangePasswordResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OwnerRegisterRequest,
    RefreshResponse,
    ResetPasswordRequest,
    ResetTokenRequest,
    RevokeSessionsResponse,
    SecurityVerdict,
    SessionListResponse,
    SessionResponse,
    StudentRegisterRequest,
    VerifyResetTokenResponse,
)
from jbs.schemas.user import UserResponse
from jbs.services.authentication import AuthService, ClientInfo
from jbs.services.insights import get_security_insights
from jbs.services.login_events import LoginEventLog
from jbs.services.tokens import AuthContext

router = APIRouter(prefix="/auth", tags=["auth"])

DASHBOARD_REDIRECTS = {
    UserRole.STUDENT: "/student-dashboard",
    UserRole.OWNER: "/owner-dashboard",
    UserRole.ADMIN: "/admin-dashboard",
}

FORGOT_PASSWORD_MESSAGE = "If an account with this email exists, a password reset link has been sent."


async def _register(
    db: AsyncSession,
    client: ClientInfo,
    role: UserRole,
    **fields,
) -> AuthResponse:
    service = AuthService(db)
    user = await service.credentials.register(role, **fields)
    issued = await service.tokens.issue(user, client.user_agent, client.ip_address)
    await service.events.append(
        LoginEventType.LOGIN_SUCCESS,
        client.ip_address,
        client.user_agent,
        user_id=user.id,
        email=user.email,
        details={"reason": "registration", "sessionId": str(issued.session.id)},
    )
    await db.commit()
    return AuthResponse(token=issued.token, user=UserResponse.from_user(user))


@router.post(
    "/register/student",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
async def register_student(
    data: StudentRegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    """Create a student account and sign it in."""
    return await _register(
        db,
        client,
        UserRole.STUDENT,
        email=data.email,
        password=data.password,
        full_name=data.full_name,
        city=data.city,
        phone=data.phone,
        address=data.address,
        institution=data.institution,
    )


@router.post(
    "/register/owner",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
async def register_owner(
    data: OwnerRegisterRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    """Create a business owner account and sign it in."""
    return await _register(
        db,
        client,
        UserRole.OWNER,
        email=data.email,
        password=data.password,
        full_name=data.owner_name,
        city=data.city,
        phone=data.phone,
        address=data.address,
        business_name=data.company_name,
    )


@router.post("/login", response_model=LoginResponse, dependencies=[Depends(enforce_ip_rate_limit)])
async def login(
    data: LoginRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    """
    Authenticate with email and password.

    Unknown email, wrong password and deactivated account all produce the
    same 401. A locked account gets 423 before the password is checked.
    """
    result = await AuthService(db).login(
        data.email,
        data.password,
        client,
        remember_me=data.remember_me,
        user_type=data.user_type,
    )
    return LoginResponse(
        token=result.issued.token,
        user=UserResponse.from_user(result.user),
        expires_in=result.issued.expires_in,
        redirect_to=DASHBOARD_REDIRECTS[result.user.role],
        security=SecurityVerdict(
            risk_score=result.assessment.risk_score,
            is_suspicious=result.assessment.is_suspicious,
            reasons=result.assessment.reasons,
        ),
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    await AuthService(db).logout(context, client)
    return MessageResponse(message="Logged out successfully")


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(
    current_user: Annotated[User, Depends(get_current_user)],
):
    return UserResponse.from_user(current_user)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    """Exchange a valid token for a fresh one; the old token stops working."""
    if credentials is None or not credentials.credentials:
        raise unauthorized()
    issued = await AuthService(db).refresh(credentials.credentials, client)
    return RefreshResponse(token=issued.token, expires_in=issued.expires_in)


@router.post("/change-password", response_model=ChangePasswordResponse)
async def change_password(
    data: ChangePasswordRequest,
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    """Change password. Every other session of the account is signed out."""
    service = AuthService(db)
    if not await service.verify_current_password(context, data.current_password, client):
        raise validation_error("Current password is incorrect", {"field": "currentPassword"})

    revoked = await service.change_password(context, data.new_password, client)
    return ChangePasswordResponse(message="Password changed successfully", revoked_sessions=revoked)


@router.post(
    "/forgot-password",
    response_model=ForgotPasswordResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
async def forgot_password(
    data: ForgotPasswordRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Start a password reset. The response is the same whether or not the account exists."""
    token = await AuthService(db).request_password_reset(data.email)
    reset_url = None
    if token and settings.DEBUG:
        reset_url = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    return ForgotPasswordResponse(message=FORGOT_PASSWORD_MESSAGE, reset_url=reset_url)


@router.post(
    "/verify-reset-token",
    response_model=VerifyResetTokenResponse,
    dependencies=[Depends(enforce_ip_rate_limit)],
)
async def verify_reset_token(
    data: ResetTokenRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
):
    user = await AuthService(db).credentials.check_reset_token(data.token)
    return VerifyResetTokenResponse(message="Reset token is valid", email=user.email)


@router.post("/reset-password", response_model=MessageResponse, dependencies=[Depends(enforce_ip_rate_limit)])
async def reset_password(
    data: ResetPasswordRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    client: Annotated[ClientInfo, Depends(get_client_info)],
):
    await AuthService(db).reset_password(data.token, data.password, client)
    return MessageResponse(message="Password has been reset. Please log in with your new password.")


# ============================================================================
# Sessions
# ============================================================================


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    sessions = await AuthService(db).tokens.list_sessions(context.user.id)
    return SessionListResponse(
        sessions=[
            SessionResponse.model_validate(s).model_copy(update={"is_current": s.id == context.session.id})
            for s in sessions
        ]
    )


@router.delete("/sessions/{session_id}", response_model=RevokeSessionsResponse)
async def revoke_session(
    session_id: UUID,
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Sign out one session. Revoking an unknown or already revoked session is not an error."""
    revoked = await AuthService(db).tokens.revoke_session(context.user.id, session_id)
    await db.commit()
    return RevokeSessionsResponse(message="Session revoked", revoked_sessions=int(revoked))


@router.delete("/sessions", response_model=RevokeSessionsResponse)
async def revoke_other_sessions(
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Sign out every session except the current one."""
    revoked = await AuthService(db).tokens.revoke_all(context.user.id, except_session_id=context.session.id)
    await db.commit()
    return RevokeSessionsResponse(message="All other sessions revoked", revoked_sessions=revoked)


@router.put("/sessions/activity", response_model=MessageResponse)
async def update_session_activity(
    context: Annotated[AuthContext, Depends(get_auth_context)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await AuthService(db).tokens.touch(context.session.id)
    await db.commit()
    return MessageResponse(message="Session activity updated")


# ============================================================================
# Login analytics
# ============================================================================


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_login_analytics(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    days: int = Query(30, ge=1, le=365),
):
    """Login statistics for the current user over the last ``days`` days."""
    log = LoginEventLog(db)
    kinds = await log.counts_by_kind(current_user.id, days=days)
    locations = await log.geographic_breakdown(current_user.id, days=days)
    devices = await log.device_breakdown(current_user.id, days=days)
    suspicious = await log.suspicious_events(current_user.id)

    return AnalyticsResponse(
        days=days,
        login_stats=[KindCountResponse.model_validate(k) for k in kinds],
        geographic_data=[LocationCountResponse.model_validate(loc) for loc in locations],
        device_stats=[DeviceCountResponse.model_validate(d) for d in devices],
        suspicious_activities=[SuspiciousEventResponse.model_validate(e) for e in suspicious],
    )


@router.get("/security-insights", response_model=SecurityInsightsResponse)
async def security_insights(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    insights = await get_security_insights(db, current_user)
    return SecurityInsightsResponse.model_validate(insights)
