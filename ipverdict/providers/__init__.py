"""Signal source adapters and the registry that builds them from settings."""
from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from .base import HttpProvider, ProviderAdapter, ProviderBundle, ProviderResult, ProviderUnavailable
from .dns import DnsblProvider, DnsResolver, ReverseDnsProvider
from .geo import GeoLiteProvider, GeoResolver
from .intelligence import (
    AbuseIPDBProvider,
    IPQualityScoreProvider,
    IpApiProvider,
    IpInfoProvider,
    MaxMindInsightsProvider,
    ProxyCheckProvider,
)
from .network import LatencyProvider, PortProbe, PortScanProvider
from .whois import RdapWhoisProvider

logger = logging.getLogger(__name__)


def build_providers(
    settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    geo_resolver: Optional[GeoResolver] = None,
    dns_resolver: Optional[DnsResolver] = None,
    port_probe: Optional[PortProbe] = None,
) -> List[ProviderAdapter]:
    """Instantiate every adapter that is enabled and has its credentials configured."""

    timeout = settings.provider_timeout
    providers: List[ProviderAdapter] = []

    if settings.port_scan_enabled:
        providers.append(
            PortScanProvider(
                ports=settings.vpn_ports,
                probe_timeout_ms=settings.port_probe_timeout_ms,
                probe=port_probe,
            )
        )
    if settings.latency_enabled:
        providers.append(
            LatencyProvider(port=settings.latency_port, samples=settings.latency_samples, probe=port_probe)
        )

    if settings.dns_enabled:
        resolver = dns_resolver or DnsResolver(timeout=settings.dns_timeout)
        providers.append(ReverseDnsProvider(resolver, timeout=timeout))
        providers.append(DnsblProvider(resolver, zones=settings.dnsbl_zones, timeout=timeout))

    if settings.rdap_enabled:
        providers.append(RdapWhoisProvider(base_url=settings.rdap_url, timeout=timeout, transport=transport))
    if settings.ip_api_enabled:
        providers.append(IpApiProvider(timeout=timeout, transport=transport))
    if settings.ipinfo_token:
        providers.append(IpInfoProvider(settings.ipinfo_token, timeout=timeout, transport=transport))
    if settings.abuseipdb_api_key:
        providers.append(AbuseIPDBProvider(settings.abuseipdb_api_key, timeout=timeout, transport=transport))
    if settings.ipqualityscore_api_key:
        providers.append(IPQualityScoreProvider(settings.ipqualityscore_api_key, timeout=timeout, transport=transport))
    if settings.proxycheck_api_key:
        providers.append(ProxyCheckProvider(settings.proxycheck_api_key, timeout=timeout, transport=transport))
    if settings.maxmind_account_id and settings.maxmind_license_key:
        providers.append(
            MaxMindInsightsProvider(settings.maxmind_account_id, settings.maxmind_license_key, timeout=timeout)
        )

    resolver = geo_resolver
    if resolver is None and settings.geoip_database_path:
        resolver = GeoResolver(str(settings.geoip_database_path))
    if resolver is not None and resolver.enabled:
        providers.append(GeoLiteProvider(resolver, timeout=timeout))

    logger.info("Configured signal providers: %s", ", ".join(provider.name for provider in providers) or "none")
    return providers


__all__ = [
    "AbuseIPDBProvider",
    "DnsResolver",
    "DnsblProvider",
    "GeoLiteProvider",
    "GeoResolver",
    "HttpProvider",
    "IPQualityScoreProvider",
    "IpApiProvider",
    "IpInfoProvider",
    "LatencyProvider",
    "MaxMindInsightsProvider",
    "PortProbe",
    "PortScanProvider",
    "ProviderAdapter",
    "ProviderBundle",
    "ProviderResult",
    "ProviderUnavailable",
    "ProxyCheckProvider",
    "RdapWhoisProvider",
    "ReverseDnsProvider",
    "build_providers",
]
