"""Account security insights shown on the user's security page."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.models.user import User
from jbs.services.login_events import LoginEventLog
from jbs.utils.time import ensure_utc, utcnow

INSIGHTS_WINDOW = timedelta(hours=24)
FAILED_ATTEMPT_PENALTY = 10
MANY_IPS_THRESHOLD = 3
MANY_IPS_PENALTY = 20
MANY_DEVICES_THRESHOLD = 2
MANY_DEVICES_PENALTY = 15
LOW_SCORE_THRESHOLD = 70


@dataclass(frozen=True)
class SecurityInsights:
    security_score: int
    failed_attempts: int
    successful_logins: int
    unique_ips: int
    unique_devices: int
    recommendations: list[str] = field(default_factory=list)
    last_login: datetime | None = None
    account_age_days: int = 0


def summarize_security(events: Sequence[LoginEvent], user: User, now: datetime) -> SecurityInsights:
    """Score account hygiene from the last day of events (100 is best, floored at 0)."""
    failed = sum(1 for e in events if e.event_type == LoginEventType.LOGIN_FAILED)
    successful = sum(1 for e in events if e.event_type == LoginEventType.LOGIN_SUCCESS)
    unique_ips = len({e.ip_address for e in events})
    unique_devices = len({e.user_agent for e in events})

    score = 100 - failed * FAILED_ATTEMPT_PENALTY
    if unique_ips > MANY_IPS_THRESHOLD:
        score -= MANY_IPS_PENALTY
    if unique_devices > MANY_DEVICES_THRESHOLD:
        score -= MANY_DEVICES_PENALTY
    score = max(0, score)

    recommendations = []
    if failed > 0:
        recommendations.append("Failed sign-in attempts detected - change your password if this was not you")
    if unique_ips > MANY_IPS_THRESHOLD:
        recommendations.append("Multiple IP addresses detected - review recent logins")
    if unique_devices > MANY_DEVICES_THRESHOLD:
        recommendations.append("Multiple devices detected - consider reviewing active sessions")
    if score < LOW_SCORE_THRESHOLD:
        recommendations.append("Security score is low - review account security settings")

    account_age_days = 0
    if user.created_at:
        account_age_days = max(0, (now - ensure_utc(user.created_at)).days)

    return SecurityInsights(
        security_score=score,
        failed_attempts=failed,
        successful_logins=successful,
        unique_ips=unique_ips,
        unique_devices=unique_devices,
        recommendations=recommendations,
        last_login=user.last_login_at,
        account_age_days=account_age_days,
    )


async def get_security_insights(db: AsyncSession, user: User, now: datetime | None = None) -> SecurityInsights:
    now = ensure_utc(now) if now else utcnow()
    events = await LoginEventLog(db).recent_window(user.id, since=now - INSIGHTS_WINDOW)
    return summarize_security(events, user, now)
