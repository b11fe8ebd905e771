"""
Login event log.

Usage:
    from jbs.services.login_events import LoginEventLog
    log = LoginEventLog(db)
    await log.append(LoginEventType.LOGIN_FAILED, ip, user_agent, user_id=user.id,
                     details={"reason": "invalid_password"})

Writes are plain inserts stamped with the server clock; nothing is ever
updated or deleted here. The caller owns the transaction.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jbs.core.exceptions import InfraError
from jbs.models.login_event import LoginEvent, LoginEventType
from jbs.services.device import parse_user_agent
from jbs.services.geoip import GeoIPService, geoip_service
from jbs.utils.time import utcnow

logger = logging.getLogger(__name__)

DEFAULT_STATS_DAYS = 30
MAX_USER_AGENT_LENGTH = 512
MAX_IP_LENGTH = 45


@dataclass(frozen=True)
class KindCount:
    event_type: LoginEventType
    count: int
    last_event: datetime


@dataclass(frozen=True)
class LocationCount:
    country: str
    city: str | None
    count: int
    last_login: datetime


@dataclass(frozen=True)
class DeviceCount:
    browser: str | None
    os: str | None
    is_mobile: bool
    count: int
    last_used: datetime


class LoginEventLog:
    def __init__(self, db: AsyncSession, geoip: GeoIPService | None = None):
        self.db = db
        self.geoip = geoip or geoip_service

    async def append(
        self,
        event_type: LoginEventType,
        ip_address: str,
        user_agent: str,
        user_id: UUID | None = None,
        email: str | None = None,
        details: dict[str, Any] | None = None,
        risk_score: int = 0,
        is_suspicious: bool = False,
    ) -> LoginEvent:
        """
        Record an event. The timestamp is always taken from the server clock.

        Raises:
            InfraError: the insert could not be flushed
        """
        user_agent = (user_agent or "Unknown")[:MAX_USER_AGENT_LENGTH]
        device = parse_user_agent(user_agent)
        location = self.geoip.lookup(ip_address)

        event = LoginEvent(
            user_id=user_id,
            email=email.lower() if email else None,
            event_type=event_type,
            timestamp=utcnow(),
            ip_address=ip_address[:MAX_IP_LENGTH],
            user_agent=user_agent,
            country=location.country if location else None,
            region=location.region if location else None,
            city=location.city if location else None,
            browser=device.browser,
            os=device.os,
            is_mobile=device.is_mobile,
            details=details or None,
            risk_score=risk_score,
            is_suspicious=is_suspicious,
        )
        self.db.add(event)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            logger.error(f"Failed to append {event_type.value} event: {e}")
            raise InfraError("login event log unavailable") from e

        return event

    async def recent_window(self, user_id: UUID, since: datetime) -> list[LoginEvent]:
        """Events for ``user_id`` at or after ``since``, newest first."""
        try:
            result = await self.db.execute(
                select(LoginEvent)
                .where(LoginEvent.user_id == user_id, LoginEvent.timestamp >= since)
                .order_by(desc(LoginEvent.timestamp), desc(LoginEvent.id))
            )
        except SQLAlchemyError as e:
            raise InfraError("login event log unavailable") from e
        return list(result.scalars().all())

    def _cutoff(self, days: int, now: datetime | None) -> datetime:
        return (now or utcnow()) - timedelta(days=days)

    async def counts_by_kind(
        self,
        user_id: UUID,
        days: int = DEFAULT_STATS_DAYS,
        now: datetime | None = None,
    ) -> list[KindCount]:
        total = func.count().label("total")
        result = await self.db.execute(
            select(LoginEvent.event_type, total, func.max(LoginEvent.timestamp).label("last_event"))
            .where(LoginEvent.user_id == user_id, LoginEvent.timestamp >= self._cutoff(days, now))
            .group_by(LoginEvent.event_type)
            .order_by(desc(total), LoginEvent.event_type)
        )
        return [
            KindCount(event_type=row.event_type, count=row.total, last_event=row.last_event)
            for row in result
        ]

    async def geographic_breakdown(
        self,
        user_id: UUID,
        days: int = DEFAULT_STATS_DAYS,
        now: datetime | None = None,
    ) -> list[LocationCount]:
        total = func.count().label("total")
        result = await self.db.execute(
            select(
                LoginEvent.country,
                LoginEvent.city,
                total,
                func.max(LoginEvent.timestamp).label("last_login"),
            )
            .where(
                LoginEvent.user_id == user_id,
                LoginEvent.timestamp >= self._cutoff(days, now),
                LoginEvent.country.is_not(None),
            )
            .group_by(LoginEvent.country, LoginEvent.city)
            .order_by(desc(total), LoginEvent.country)
        )
        return [
            LocationCount(country=row.country, city=row.city, count=row.total, last_login=row.last_login)
            for row in result
        ]

    async def device_breakdown(
        self,
        user_id: UUID,
        days: int = DEFAULT_STATS_DAYS,
        now: datetime | None = None,
    ) -> list[DeviceCount]:
        total = func.count().label("total")
        result = await self.db.execute(
            select(
                LoginEvent.browser,
                LoginEvent.os,
                LoginEvent.is_mobile,
                total,
                func.max(LoginEvent.timestamp).label("last_used"),
            )
            .where(LoginEvent.user_id == user_id, LoginEvent.timestamp >= self._cutoff(days, now))
            .group_by(LoginEvent.browser, LoginEvent.os, LoginEvent.is_mobile)
            .order_by(desc(total), LoginEvent.browser)
        )
        return [
            DeviceCount(
                browser=row.browser,
                os=row.os,
                is_mobile=row.is_mobile,
                count=row.total,
                last_used=row.last_used,
            )
            for row in result
        ]

    async def suspicious_events(
        self,
        user_id: UUID,
        days: int = 7,
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[LoginEvent]:
        result = await self.db.execute(
            select(LoginEvent)
            .where(
                LoginEvent.user_id == user_id,
                LoginEvent.is_suspicious.is_(True),
                LoginEvent.timestamp >= self._cutoff(days, now),
            )
            .order_by(desc(LoginEvent.timestamp), desc(LoginEvent.id))
            .limit(limit)
        )
        return list(result.scalars().all())
