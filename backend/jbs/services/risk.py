"""
Heuristic login risk scoring.

The score is the sum of the weights of the triggered signals, evaluated over
the user's trailing event window (events recorded before the attempt being
assessed):

    A  failed logins in window >= 5                  +30  multiple failed login attempts
    B  origin address not seen in window             +20  login from new IP address
    C  user-agent not seen in window                 +15  login from new device
    D  successful logins in the last 60 min >= 3     +25  rapid login attempts
    E  |hour - mean success hour (default 12)| > 6   +10  unusual login time

A login is suspicious at 50 points or more. Hours are UTC. ``score_window``
is a pure function of the window, the request and ``now``; ``RiskScorer``
only adds the window fetch.
"""
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import Settings, settings
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.services.login_events import LoginEventLog
from jbs.utils.time import ensure_utc, utcnow

REASON_FAILED_ATTEMPTS = "multiple failed login attempts"
REASON_NEW_IP = "login from new IP address"
REASON_NEW_DEVICE = "login from new device"
REASON_RAPID_LOGINS = "rapid login attempts"
REASON_UNUSUAL_TIME = "unusual login time"


@dataclass(frozen=True)
class RiskPolicy:
    window: timedelta = timedelta(hours=24)
    failed_attempts_threshold: int = 5
    failed_attempts_weight: int = 30
    new_ip_weight: int = 20
    new_device_weight: int = 15
    rapid_login_threshold: int = 3
    rapid_login_window: timedelta = timedelta(minutes=60)
    rapid_login_weight: int = 25
    unusual_hour_delta: float = 6.0
    default_login_hour: float = 12.0
    unusual_time_weight: int = 10
    suspicious_threshold: int = 50

    @classmethod
    def from_settings(cls, config: Settings) -> "RiskPolicy":
        return cls(
            window=timedelta(hours=config.RISK_WINDOW_HOURS),
            failed_attempts_threshold=config.RISK_FAILED_ATTEMPTS_THRESHOLD,
            failed_attempts_weight=config.RISK_FAILED_ATTEMPTS_WEIGHT,
            new_ip_weight=config.RISK_NEW_IP_WEIGHT,
            new_device_weight=config.RISK_NEW_DEVICE_WEIGHT,
            rapid_login_threshold=config.RISK_RAPID_LOGIN_THRESHOLD,
            rapid_login_window=timedelta(minutes=config.RISK_RAPID_LOGIN_WINDOW_MINUTES),
            rapid_login_weight=config.RISK_RAPID_LOGIN_WEIGHT,
            unusual_hour_delta=config.RISK_UNUSUAL_HOUR_DELTA,
            default_login_hour=config.RISK_DEFAULT_LOGIN_HOUR,
            unusual_time_weight=config.RISK_UNUSUAL_TIME_WEIGHT,
            suspicious_threshold=config.RISK_SUSPICIOUS_THRESHOLD,
        )


@dataclass(frozen=True)
class RiskAssessment:
    risk_score: int
    is_suspicious: bool
    reasons: list[str] = field(default_factory=list)

    def as_details(self) -> dict:
        return {
            "riskScore": self.risk_score,
            "isSuspicious": self.is_suspicious,
            "reasons": list(self.reasons),
        }


def score_window(
    events: Sequence[LoginEvent],
    ip_address: str,
    user_agent: str,
    now: datetime,
    policy: RiskPolicy,
) -> RiskAssessment:
    """Score a login attempt against the events of the trailing window.

    Events outside ``policy.window`` are ignored, so callers may pass a
    wider slice.
    """
    now = ensure_utc(now)
    window_start = now - policy.window
    window = [e for e in events if window_start <= e.timestamp <= now]

    score = 0
    reasons: list[str] = []

    failed = [e for e in window if e.event_type == LoginEventType.LOGIN_FAILED]
    if len(failed) >= policy.failed_attempts_threshold:
        score += policy.failed_attempts_weight
        reasons.append(REASON_FAILED_ATTEMPTS)

    if ip_address not in {e.ip_address for e in window}:
        score += policy.new_ip_weight
        reasons.append(REASON_NEW_IP)

    if user_agent not in {e.user_agent for e in window}:
        score += policy.new_device_weight
        reasons.append(REASON_NEW_DEVICE)

    successes = [e for e in window if e.event_type == LoginEventType.LOGIN_SUCCESS]
    rapid_start = now - policy.rapid_login_window
    recent_successes = [e for e in successes if e.timestamp > rapid_start]
    if len(recent_successes) >= policy.rapid_login_threshold:
        score += policy.rapid_login_weight
        reasons.append(REASON_RAPID_LOGINS)

    if successes:
        average_hour = sum(e.timestamp.hour for e in successes) / len(successes)
    else:
        average_hour = policy.default_login_hour
    if abs(now.hour - average_hour) > policy.unusual_hour_delta:
        score += policy.unusual_time_weight
        reasons.append(REASON_UNUSUAL_TIME)

    return RiskAssessment(
        risk_score=score,
        is_suspicious=score >= policy.suspicious_threshold,
        reasons=reasons,
    )


class RiskScorer:
    def __init__(self, db: AsyncSession, policy: RiskPolicy | None = None):
        self.events = LoginEventLog(db)
        self.policy = policy or RiskPolicy.from_settings(settings)

    async def assess(
        self,
        user_id: UUID,
        ip_address: str,
        user_agent: str,
        now: datetime | None = None,
    ) -> RiskAssessment:
        """Fetch the trailing window for ``user_id`` and score the attempt."""
        now = ensure_utc(now) if now else utcnow()
        window = await self.events.recent_window(user_id, since=now - self.policy.window)
        return score_window(window, ip_address, user_agent, now, self.policy)
