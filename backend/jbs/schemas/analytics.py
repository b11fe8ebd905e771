from datetime import datetime
from typing import Any

from jbs.models.login_event import LoginEventType
from jbs.schemas.base import CamelModel


class KindCountResponse(CamelModel):
    event_type: LoginEventType
    count: int
    last_event: datetime


class LocationCountResponse(CamelModel):
    country: str
    city: str | None = None
    count: int
    last_login: datetime


class DeviceCountResponse(CamelModel):
    browser: str | None = None
    os: str | None = None
    is_mobile: bool
    count: int
    last_used: datetime


class SuspiciousEventResponse(CamelModel):
    event_type: LoginEventType
    timestamp: datetime
    ip_address: str
    risk_score: int
    details: dict[str, Any] | None = None


class AnalyticsResponse(CamelModel):
    days: int
    login_stats: list[KindCountResponse]
    geographic_data: list[LocationCountResponse]
    device_stats: list[DeviceCountResponse]
    suspicious_activities: list[SuspiciousEventResponse]


class SecurityInsightsResponse(CamelModel):
    security_score: int
    failed_attempts: int
    successful_logins: int
    unique_ips: int
    unique_devices: int
    recommendations: list[str]
    last_login: datetime | None = None
    account_age_days: int
