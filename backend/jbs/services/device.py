"""
User-agent parsing for device statistics.

Only coarse browser / OS / mobile detection is needed for the device
breakdown; the raw user-agent string remains the client signature used by
the risk scorer.
"""

import re
from dataclasses import dataclass

UNKNOWN = "Unknown"

# Order matters: Chromium derivatives also advertise Chrome and Safari
_BROWSER_PATTERNS: list[tuple[str, str]] = [
    (r"Edg(?:e|A|iOS)?/", "Edge"),
    (r"OPR/|Opera", "Opera"),
    (r"SamsungBrowser/", "Samsung Internet"),
    (r"CriOS/", "Chrome"),
    (r"Chrome/", "Chrome"),
    (r"FxiOS/", "Firefox"),
    (r"Firefox/", "Firefox"),
    (r"MSIE |Trident/", "Internet Explorer"),
    (r"Safari/", "Safari"),
]

_OS_PATTERNS: list[tuple[str, str]] = [
    (r"Windows Phone", "Windows Phone"),
    (r"Windows NT", "Windows"),
    (r"iPhone|iPad|iPod", "iOS"),
    (r"Android", "Android"),
    (r"CrOS", "Chrome OS"),
    (r"Mac OS X|Macintosh", "macOS"),
    (r"Linux", "Linux"),
]

_BOT_PATTERN = re.compile(r"bot|crawler|spider|curl|wget|python-requests|httpx", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(r"Mobi|iPhone|iPod|Android.*Mobile|Windows Phone", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceInfo:
    browser: str
    os: str
    is_mobile: bool
    is_bot: bool = False


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    if not user_agent or user_agent == UNKNOWN:
        return DeviceInfo(browser=UNKNOWN, os=UNKNOWN, is_mobile=False)

    if _BOT_PATTERN.search(user_agent):
        return DeviceInfo(browser="Bot", os=UNKNOWN, is_mobile=False, is_bot=True)

    browser = next(
        (name for pattern, name in _BROWSER_PATTERNS if re.search(pattern, user_agent)),
        UNKNOWN,
    )
    os_name = next(
        (name for pattern, name in _OS_PATTERNS if re.search(pattern, user_agent)),
        UNKNOWN,
    )

    return DeviceInfo(
        browser=browser,
        os=os_name,
        is_mobile=bool(_MOBILE_PATTERN.search(user_agent)),
    )
