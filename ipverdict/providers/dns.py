"""Reverse DNS and DNS blocklist adapters backed by dnspython."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Sequence

import dns.asyncresolver
import dns.exception
import dns.resolver
import dns.reversename

from .base import ProviderAdapter, ProviderUnavailable

logger = logging.getLogger(__name__)

DEFAULT_DNSBL_ZONES: tuple[str, ...] = (
    "zen.spamhaus.org",
    "dnsbl.sorbs.net",
    "bl.spamcop.net",
    "cbl.abuseat.org",
    "dnsbl.njabl.org",
    "b.barracudacentral.org",
)

_REVERSE_SUFFIXES = (".in-addr.arpa", ".ip6.arpa")


def reversed_label(ip: str) -> str:
    """Return the reverse-octet (or nibble) label used for blocklist queries."""

    name = dns.reversename.from_address(ip).to_text(omit_final_dot=True)
    for suffix in _REVERSE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class DnsResolver:
    """Thin async wrapper over :class:`dns.asyncresolver.Resolver`."""

    def __init__(self, *, timeout: float = 3.0, resolver: Optional[Any] = None) -> None:
        if resolver is None:
            resolver = dns.asyncresolver.Resolver()
            resolver.timeout = timeout
            resolver.lifetime = timeout
        self._resolver = resolver

    async def reverse_ptr(self, ip: str) -> List[str]:
        """PTR hostnames for ``ip``; an empty list when no record exists.

        Resolver failures (timeouts, unreachable nameservers) propagate as
        :class:`dns.exception.DNSException`.
        """

        try:
            answer = await self._resolver.resolve_address(ip)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        return [record.to_text().rstrip(".").lower() for record in answer]

    async def is_listed(self, ip: str, zone: str) -> Optional[bool]:
        """Check one blocklist. ``None`` means the list did not answer."""

        query = f"{reversed_label(ip)}.{zone}"
        try:
            await self._resolver.resolve(query, "A")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return False
        except dns.exception.DNSException as exc:
            logger.debug("DNSBL %s did not answer for %s: %s", zone, ip, exc)
            return None
        return True


class ReverseDnsProvider(ProviderAdapter):
    name = "reverse_dns"

    def __init__(self, resolver: DnsResolver, **kwargs) -> None:
        super().__init__(**kwargs)
        self._resolver = resolver

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        try:
            hostnames = await self._resolver.reverse_ptr(ip)
        except dns.exception.DNSException as exc:
            raise ProviderUnavailable(f"PTR lookup failed: {exc.__class__.__name__}") from exc
        return {"hostnames": hostnames}


class DnsblProvider(ProviderAdapter):
    """Query every blocklist zone concurrently."""

    name = "dnsbl"

    def __init__(self, resolver: DnsResolver, *, zones: Sequence[str] = DEFAULT_DNSBL_ZONES, **kwargs) -> None:
        super().__init__(**kwargs)
        self._resolver = resolver
        self._zones = tuple(zones)

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        answers = await asyncio.gather(*(self._resolver.is_listed(ip, zone) for zone in self._zones))
        listed = [zone for zone, answer in zip(self._zones, answers) if answer is True]
        checked = [zone for zone, answer in zip(self._zones, answers) if answer is not None]
        if listed:
            logger.debug("%s listed on %s", ip, ", ".join(listed))
        return {"listed": listed, "checked": checked, "total": len(self._zones)}


__all__ = [
    "DEFAULT_DNSBL_ZONES",
    "DnsResolver",
    "DnsblProvider",
    "ReverseDnsProvider",
    "reversed_label",
]
