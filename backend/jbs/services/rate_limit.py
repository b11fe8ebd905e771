"""
Per-address rate limiting for the sign-in endpoints.

Counts failed logins per client IP across all accounts, so password
spraying from one address is throttled even when no single account
reaches its lockout threshold. Counts come from the login event log.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.config import settings
from jbs.core.exceptions import RateLimited
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


def _failures_from(ip_address: str, since: datetime):
    return (
        LoginEvent.ip_address == ip_address,
        LoginEvent.event_type == LoginEventType.LOGIN_FAILED,
        LoginEvent.timestamp >= since,
    )


async def get_failed_attempt_count(
    db: AsyncSession,
    ip_address: str,
    window: timedelta,
    now: datetime | None = None,
) -> int:
    """Count failed logins from an address within the trailing window."""
    now = ensure_utc(now) if now else utcnow()
    result = await db.execute(
        select(func.count()).select_from(LoginEvent).where(*_failures_from(ip_address, now - window))
    )
    return result.scalar() or 0


async def check_ip_rate_limit(
    db: AsyncSession,
    ip_address: str,
    max_failures: int | None = None,
    window: timedelta | None = None,
    now: datetime | None = None,
) -> None:
    """
    Refuse the request when the address has too many recent failed logins.

    Raises:
        RateLimited: limit reached; ``retry_after`` is when the oldest
            counted failure leaves the window
    """
    if max_failures is None:
        max_failures = settings.IP_RATE_LIMIT_MAX_FAILURES
    if max_failures is None:
        return
    if window is None:
        window = timedelta(minutes=settings.IP_RATE_LIMIT_WINDOW_MINUTES)

    now = ensure_utc(now) if now else utcnow()
    count = await get_failed_attempt_count(db, ip_address, window, now=now)
    if count < max_failures:
        return

    # The address is admitted again once it drops below the limit
    result = await db.execute(
        select(LoginEvent.timestamp)
        .where(*_failures_from(ip_address, now - window))
        .order_by(LoginEvent.timestamp.asc(), LoginEvent.id.asc())
        .offset(count - max_failures)
        .limit(1)
    )
    oldest = ensure_utc(result.scalar_one())
    retry_after = max(oldest + window - now, timedelta(seconds=1))

    logger.warning(f"Rate limit reached for {ip_address}: {count} failed logins in {window}")
    raise RateLimited(retry_after)
