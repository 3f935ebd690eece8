"""IP geolocation enrichment backed by a MaxMind database."""

import logging
import os
from dataclasses import dataclass
from typing import Protocol

import geoip2.database
import geoip2.errors

logger = logging.getLogger("formtrack.geo")


@dataclass(frozen=True)
class GeoLocation:
    country: str | None
    city: str | None = None


class GeoEnricher(Protocol):
    def locate(self, ip_address: str) -> GeoLocation | None:
        ...


class GeoIPEnricher:
    """Resolves addresses with a ``geoip2`` reader (City or Country database)."""

    def __init__(self, reader: geoip2.database.Reader) -> None:
        self._reader = reader
        self._city_db = "City" in (reader.metadata().database_type or "")

    def locate(self, ip_address: str) -> GeoLocation | None:
        try:
            if self._city_db:
                resp = self._reader.city(ip_address)
                return GeoLocation(country=resp.country.name, city=resp.city.name)
            resp = self._reader.country(ip_address)
            return GeoLocation(country=resp.country.name)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return None

    def close(self) -> None:
        self._reader.close()


def open_geoip(db_path: str) -> GeoIPEnricher | None:
    """Open the database at ``db_path`` if it exists."""
    if not os.path.exists(db_path):
        logger.info("GeoIP database not found at %s; geographic breakdown disabled", db_path)
        return None
    return GeoIPEnricher(geoip2.database.Reader(db_path))
