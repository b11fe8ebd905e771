"""
GeoIP enrichment for login events using a MaxMind GeoLite2-City database.

The database file is provisioned out of band (``GEOIP_DB_PATH``). When it is
absent every lookup returns None and events are stored without location.
"""
import ipaddress
import logging
from dataclasses import dataclass
from pathlib import Path

import geoip2.database
from geoip2.errors import AddressNotFoundError

from jbs.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoLocation:
    country: str | None
    region: str | None
    city: str | None
    timezone: str | None = None


class GeoIPService:
    """MaxMind GeoIP lookup service."""

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._reader: geoip2.database.Reader | None = None

    def is_database_available(self) -> bool:
        return self.db_path.exists()

    def _reload_reader(self) -> None:
        if self._reader:
            self._reader.close()
            self._reader = None

        if self.is_database_available():
            try:
                self._reader = geoip2.database.Reader(str(self.db_path))
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load GeoIP database: {e}")

    def _get_reader(self) -> geoip2.database.Reader | None:
        if not self._reader and self.is_database_available():
            self._reload_reader()
        return self._reader

    def lookup(self, ip: str) -> GeoLocation | None:
        """Look up location for a public IP address; None if unknown."""
        if not self.is_public_ip(ip):
            return None

        reader = self._get_reader()
        if not reader:
            return None

        try:
            response = reader.city(ip)
        except AddressNotFoundError:
            return None
        except ValueError as e:
            logger.warning(f"GeoIP lookup failed for {ip}: {e}")
            return None

        return GeoLocation(
            country=response.country.name,
            region=response.subdivisions.most_specific.name if response.subdivisions else None,
            city=response.city.name,
            timezone=response.location.time_zone,
        )

    @staticmethod
    def is_public_ip(ip: str) -> bool:
        """Check if an IP address is public (not private/reserved)."""
        try:
            return ipaddress.ip_address(ip).is_global
        except ValueError:
            return False

    def close(self) -> None:
        if self._reader:
            self._reader.close()
            self._reader = None


# Singleton instance
geoip_service = GeoIPService(settings.GEOIP_DB_PATH)
