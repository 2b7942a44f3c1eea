"""Local GeoLite2/GeoIP2 database lookups."""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import geoip2.database
import geoip2.errors

from .base import ProviderAdapter, ProviderUnavailable, country_code

logger = logging.getLogger(__name__)


@dataclass
class GeoLookupResult:
    ip: Optional[str]
    country: Optional[str]
    region: Optional[str]
    city: Optional[str]
    asn: Optional[str]


class GeoResolver:
    """Resolve IP addresses against a local MaxMind database."""

    def __init__(self, database_path: Optional[str] = None) -> None:
        self._reader = None
        if database_path:
            try:
                self._reader = geoip2.database.Reader(database_path)
            except FileNotFoundError:
                logger.warning("GeoIP database %s not found; local geolocation disabled", database_path)
                self._reader = None

    @property
    def enabled(self) -> bool:
        return self._reader is not None

    def resolve(self, ip: Optional[str]) -> GeoLookupResult:
        if not ip:
            return GeoLookupResult(None, None, None, None, None)
        try:
            addr = ipaddress.ip_address(ip)
            if addr.is_private or addr.is_loopback or addr.is_reserved:
                return GeoLookupResult(ip, None, None, None, None)
        except ValueError:
            return GeoLookupResult(ip, None, None, None, None)

        if not self._reader:
            return GeoLookupResult(ip, None, None, None, None)

        try:
            city = self._reader.city(ip)
        except (geoip2.errors.AddressNotFoundError, ValueError):
            return GeoLookupResult(ip, None, None, None, None)

        asn = None
        try:
            asn = self._reader.asn(ip).autonomous_system_number
        except (TypeError, geoip2.errors.AddressNotFoundError):
            # city databases carry no ASN records
            asn = None
        region = city.subdivisions[0].name if city.subdivisions else None
        return GeoLookupResult(
            ip=ip,
            country=country_code(city.country.iso_code),
            region=region,
            city=city.city.name,
            asn=f"AS{asn}" if asn else None,
        )

    def close(self) -> None:
        if self._reader:
            self._reader.close()
            self._reader = None


class GeoLiteProvider(ProviderAdapter):
    """Adapter exposing :class:`GeoResolver` as a signal source."""

    name = "geolite"

    def __init__(self, resolver: GeoResolver, **kwargs) -> None:
        super().__init__(**kwargs)
        self._resolver = resolver

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        result = self._resolver.resolve(ip)
        if result.country is None:
            raise ProviderUnavailable("address not present in local GeoIP database")
        return {"country": result.country, "region": result.region, "city": result.city, "asn": result.asn}

    def close(self) -> None:
        self._resolver.close()


__all__ = ["GeoLiteProvider", "GeoLookupResult", "GeoResolver"]
