"""WHOIS registration data via RDAP."""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, Optional

import httpx

from .base import HttpProvider, ProviderUnavailable, country_code

logger = logging.getLogger(__name__)

RDAP_HEADERS = {"Accept": "application/rdap+json, application/json"}


def _vcard_value(entity: Mapping[str, Any], key: str) -> Optional[str]:
    vcard = entity.get("vcardArray")
    if not isinstance(vcard, list) or len(vcard) < 2 or not isinstance(vcard[1], list):
        return None
    for item in vcard[1]:
        if isinstance(item, list) and len(item) >= 4 and item[0] == key:
            value = item[3]
            if isinstance(value, list):
                value = " ".join(str(part) for part in value if part)
            if value:
                return str(value)
    return None


def _walk_entities(entities: Iterable[Any]) -> Iterable[Mapping[str, Any]]:
    for entity in entities or ():
        if not isinstance(entity, Mapping):
            continue
        yield entity
        yield from _walk_entities(entity.get("entities") or ())


def _remarks(payload: Mapping[str, Any]) -> List[str]:
    lines: List[str] = []
    for remark in payload.get("remarks") or ():
        if not isinstance(remark, Mapping):
            continue
        for line in remark.get("description") or ():
            if isinstance(line, str) and line.strip():
                lines.append(line.strip())
    return lines


def parse_rdap(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Pull organisation, description and abuse contact out of an RDAP IP network object."""

    organization: Optional[str] = None
    abuse_email: Optional[str] = None
    for entity in _walk_entities(payload.get("entities") or ()):
        roles = entity.get("roles") or ()
        if organization is None and ("registrant" in roles or "administrative" in roles):
            organization = _vcard_value(entity, "org") or _vcard_value(entity, "fn")
        if abuse_email is None and "abuse" in roles:
            abuse_email = _vcard_value(entity, "email")

    if organization is None:
        for entity in _walk_entities(payload.get("entities") or ()):
            organization = _vcard_value(entity, "org") or _vcard_value(entity, "fn")
            if organization:
                break

    return {
        "organization": organization,
        "description": " ".join(_remarks(payload)) or None,
        "network_name": payload.get("name"),
        "handle": payload.get("handle"),
        "country": country_code(payload.get("country")),
        "abuse_email": abuse_email,
        "start_address": payload.get("startAddress"),
        "end_address": payload.get("endAddress"),
    }


class RdapWhoisProvider(HttpProvider):
    """Look up the registered network for an address through an RDAP redirector."""

    name = "whois"

    def __init__(self, *, base_url: str = "https://rdap.org/ip/", **kwargs) -> None:
        super().__init__(**kwargs)
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport, follow_redirects=True
        ) as client:
            response = await client.get(f"{self._base_url}{ip}", headers=RDAP_HEADERS)
            if response.status_code == 404:
                raise ProviderUnavailable("no RDAP record for address")
            response.raise_for_status()
            payload = response.json()
        if not isinstance(payload, Mapping):
            raise ProviderUnavailable("unexpected RDAP payload")
        parsed = parse_rdap(payload)
        logger.debug("RDAP for %s: org=%s network=%s", ip, parsed["organization"], parsed["network_name"])
        return parsed


__all__ = ["RdapWhoisProvider", "parse_rdap"]
