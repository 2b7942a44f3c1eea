"""Common provider adapter interface."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderResult:
    """Normalised payload from one signal source, always tagged with availability."""

    source: str
    data: Mapping[str, Any] = field(default_factory=dict)
    available: bool = True
    error: Optional[str] = None

    @classmethod
    def unavailable(cls, source: str, reason: str) -> "ProviderResult":
        return cls(source=source, data={}, available=False, error=reason)

    def as_dict(self) -> dict[str, object]:
        return {
            "source": self.source,
            "available": self.available,
            "error": self.error,
            "data": dict(self.data),
        }


class ProviderUnavailable(Exception):
    """Raised inside an adapter when the source answered but has nothing usable."""


class ProviderBundle:
    """Results of one fan-out, keyed by provider name."""

    def __init__(self, results: Iterable[ProviderResult] = ()) -> None:
        self._results: Dict[str, ProviderResult] = {}
        for result in results:
            self._results[result.source] = result

    def data(self, source: str) -> Optional[Mapping[str, Any]]:
        """Return the data of ``source`` or ``None`` when it did not answer."""

        result = self._results.get(source)
        if result is None or not result.available:
            return None
        return result.data

    def available_sources(self) -> list[str]:
        return [name for name, result in self._results.items() if result.available]

    def unavailable_sources(self) -> list[str]:
        return [name for name, result in self._results.items() if not result.available]

    def __contains__(self, source: object) -> bool:
        return source in self._results

    def __len__(self) -> int:
        return len(self._results)


class ProviderAdapter:
    """Base class for signal sources.

    Subclasses implement :meth:`_fetch` and return normalised data. :meth:`fetch`
    applies the adapter timeout and converts every failure into an unavailable
    result, so nothing raises past this boundary.
    """

    name: str = "provider"

    def __init__(self, *, timeout: float = 5.0) -> None:
        self.timeout = timeout

    async def fetch(self, ip: str) -> ProviderResult:
        try:
            data = await asyncio.wait_for(self._fetch(ip), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Provider %s timed out after %.1fs for %s", self.name, self.timeout, ip)
            return ProviderResult.unavailable(self.name, "timeout")
        except httpx.HTTPError as exc:
            logger.warning("Provider %s failed for %s: %s", self.name, ip, exc)
            return ProviderResult.unavailable(self.name, str(exc) or exc.__class__.__name__)
        except ProviderUnavailable as exc:
            logger.info("Provider %s unavailable for %s: %s", self.name, ip, exc)
            return ProviderResult.unavailable(self.name, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error in provider %s for %s", self.name, ip)
            return ProviderResult.unavailable(self.name, exc.__class__.__name__)
        return ProviderResult(source=self.name, data=data)

    async def _fetch(self, ip: str) -> Mapping[str, Any]:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        """Release resources held by the adapter."""


class HttpProvider(ProviderAdapter):
    """Adapter backed by a JSON HTTP API."""

    def __init__(self, *, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        super().__init__(timeout=timeout)
        self._transport = transport

    async def _get_json(
        self,
        url: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
        auth: Optional[tuple[str, str]] = None,
    ) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.get(url, params=params, headers=headers, auth=auth)
            response.raise_for_status()
            return response.json()


def country_code(value: object) -> Optional[str]:
    """Normalise an ISO country code, ignoring empty values."""

    if not isinstance(value, str):
        return None
    stripped = value.strip().upper()
    if len(stripped) != 2 or not stripped.isalpha():
        return None
    return stripped


__all__ = [
    "HttpProvider",
    "ProviderAdapter",
    "ProviderBundle",
    "ProviderResult",
    "ProviderUnavailable",
    "country_code",
]
