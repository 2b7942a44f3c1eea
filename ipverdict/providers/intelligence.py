"""Third-party IP intelligence adapters."""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import geoip2.errors
import geoip2.webservice

from .base import HttpProvider, ProviderAdapter, ProviderUnavailable, country_code

logger = logging.getLogger(__name__)


def _as_bool(value: object) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"yes", "true", "1"}
    return bool(value)


def _as_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AbuseIPDBProvider(HttpProvider):
    """AbuseIPDB ``/check`` endpoint."""

    name = "abuseipdb"
    url = "https://api.abuseipdb.com/api/v2/check"

    def __init__(self, api_key: str, *, max_age_days: int = 90, **kwargs) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key
        self._max_age_days = max_age_days

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        headers = {"Key": self._api_key, "Accept": "application/json"}
        params = {"ipAddress": ip, "maxAgeInDays": str(self._max_age_days)}
        payload = await self._get_json(self.url, params=params, headers=headers)
        data = payload.get("data") or {}
        if not data:
            raise ProviderUnavailable("empty AbuseIPDB response")
        return {
            "abuse_confidence": _as_float(data.get("abuseConfidenceScore")),
            "usage_type": data.get("usageType"),
            "is_whitelisted": _as_bool(data.get("isWhitelisted")),
            "total_reports": int(data.get("totalReports") or 0),
            "isp": data.get("isp"),
            "country": country_code(data.get("countryCode")),
        }


class IPQualityScoreProvider(HttpProvider):
    """IPQualityScore proxy/VPN detection API."""

    name = "ipqualityscore"
    base_url = "https://ipqualityscore.com/api/json/ip"

    def __init__(self, api_key: str, *, strictness: int = 1, **kwargs) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key
        self._strictness = strictness

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        params = {"strictness": str(self._strictness), "allow_public_access_points": "true"}
        payload = await self._get_json(f"{self.base_url}/{self._api_key}/{ip}", params=params)
        if not payload.get("success", False):
            raise ProviderUnavailable(str(payload.get("message") or "IPQualityScore request rejected"))
        return {
            "fraud_score": _as_float(payload.get("fraud_score")),
            "vpn": _as_bool(payload.get("vpn")),
            "proxy": _as_bool(payload.get("proxy")),
            "tor": _as_bool(payload.get("tor")),
            "recent_abuse": _as_bool(payload.get("recent_abuse")),
            "isp": payload.get("ISP"),
            "host": payload.get("host"),
            "country": country_code(payload.get("country_code")),
        }


class ProxyCheckProvider(HttpProvider):
    """proxycheck.io v2 API."""

    name = "proxycheck"
    base_url = "https://proxycheck.io/v2"

    def __init__(self, api_key: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self._api_key = api_key

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        params = {"key": self._api_key, "vpn": "1", "asn": "1", "risk": "1"}
        payload = await self._get_json(f"{self.base_url}/{ip}", params=params)
        status = str(payload.get("status") or "").lower()
        if status not in {"ok", "warning"}:
            raise ProviderUnavailable(str(payload.get("message") or f"proxycheck status {status!r}"))
        entry = payload.get(ip)
        if not isinstance(entry, Mapping):
            raise ProviderUnavailable("proxycheck returned no entry for address")
        return {
            "proxy": _as_bool(entry.get("proxy")),
            "type": entry.get("type"),
            "risk": _as_float(entry.get("risk")),
            "provider": entry.get("provider"),
            "organisation": entry.get("organisation"),
            "country": country_code(entry.get("isocode")),
        }


class IpApiProvider(HttpProvider):
    """ip-api.com geolocation with proxy/hosting flags (no key required)."""

    name = "ip_api"
    base_url = "http://ip-api.com/json"
    fields = "status,message,countryCode,regionName,city,isp,org,as,asname,mobile,proxy,hosting,query"

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        payload = await self._get_json(f"{self.base_url}/{ip}", params={"fields": self.fields})
        if payload.get("status") != "success":
            raise ProviderUnavailable(str(payload.get("message") or "ip-api lookup failed"))
        return {
            "country": country_code(payload.get("countryCode")),
            "region": payload.get("regionName"),
            "city": payload.get("city"),
            "isp": payload.get("isp"),
            "org": payload.get("org"),
            "as": payload.get("as"),
            "mobile": _as_bool(payload.get("mobile")),
            "proxy": _as_bool(payload.get("proxy")),
            "hosting": _as_bool(payload.get("hosting")),
        }


class IpInfoProvider(HttpProvider):
    """ipinfo.io geolocation."""

    name = "ipinfo"
    base_url = "https://ipinfo.io"

    def __init__(self, token: Optional[str] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._token = token

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        params = {"token": self._token} if self._token else None
        payload = await self._get_json(f"{self.base_url}/{ip}/json", params=params)
        if payload.get("bogon"):
            raise ProviderUnavailable("bogon address")
        return {
            "country": country_code(payload.get("country")),
            "region": payload.get("region"),
            "org": payload.get("org"),
            "hostname": payload.get("hostname"),
        }


class MaxMindInsightsProvider(ProviderAdapter):
    """MaxMind GeoIP2 Insights web service."""

    name = "maxmind"

    def __init__(self, account_id: int, license_key: str, *, host: str = "geoip.maxmind.com", **kwargs) -> None:
        super().__init__(**kwargs)
        self._account_id = account_id
        self._license_key = license_key
        self._host = host

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        try:
            async with geoip2.webservice.AsyncClient(
                self._account_id,
                self._license_key,
                host=self._host,
                timeout=self.timeout,
            ) as client:
                response = await client.insights(ip)
        except geoip2.errors.AddressNotFoundError as exc:
            raise ProviderUnavailable(str(exc)) from exc
        except geoip2.errors.GeoIP2Error as exc:
            logger.warning("MaxMind lookup failed for %s: %s", ip, exc)
            raise ProviderUnavailable(str(exc)) from exc

        traits = response.traits
        return {
            "country": country_code(response.country.iso_code),
            "is_anonymous": bool(getattr(traits, "is_anonymous", False)),
            "is_anonymous_vpn": bool(getattr(traits, "is_anonymous_vpn", False)),
            "is_hosting_provider": bool(getattr(traits, "is_hosting_provider", False)),
            "is_public_proxy": bool(getattr(traits, "is_public_proxy", False)),
            "is_tor_exit_node": bool(getattr(traits, "is_tor_exit_node", False)),
            "organization": getattr(traits, "autonomous_system_organization", None),
        }


__all__ = [
    "AbuseIPDBProvider",
    "IPQualityScoreProvider",
    "IpApiProvider",
    "IpInfoProvider",
    "MaxMindInsightsProvider",
    "ProxyCheckProvider",
]
