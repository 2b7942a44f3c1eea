"""Detection pipeline: validate, consult the cache, fan out, evaluate, aggregate, persist."""
from __future__ import annotations

import asyncio
import ipaddress
import logging
from typing import Optional, Sequence

from .cache import CacheStore, MemoryCache, cache_key
from .fusion import aggregate
from .heuristics import HeuristicEngine, VpnRange, load_vpn_ranges
from .providers import build_providers
from .providers.base import ProviderAdapter, ProviderBundle
from .scoring import DEFAULT_SCORING, ScoringConfig
from .signals import VerdictResult
from .store import HistoryStore

logger = logging.getLogger(__name__)


class InvalidIPAddressError(ValueError):
    """Raised for malformed input before any provider is contacted."""


class DetectionTimeoutError(Exception):
    """Raised when a detection exceeds its overall deadline."""


def normalize_ip(value: str) -> str:
    """Return the canonical text form of ``value`` or raise :class:`InvalidIPAddressError`."""

    if not isinstance(value, str) or not value.strip():
        raise InvalidIPAddressError("IP address is required")
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        raise InvalidIPAddressError(f"Invalid IP address: {value!r}") from None


class DetectionEngine:
    """High-level pipeline producing one :class:`VerdictResult` per address."""

    def __init__(
        self,
        providers: Sequence[ProviderAdapter],
        *,
        config: ScoringConfig = DEFAULT_SCORING,
        ranges: Sequence[VpnRange] = (),
        cache: Optional[CacheStore] = None,
        history: Optional[HistoryStore] = None,
        cache_ttl: int = 3600,
        timeout: float = 20.0,
    ) -> None:
        self.providers = tuple(providers)
        self.config = config
        self.heuristics = HeuristicEngine(config, ranges)
        self.cache = cache
        self.history = history
        self.cache_ttl = cache_ttl
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls,
        settings,
        *,
        cache: Optional[CacheStore] = None,
        history: Optional[HistoryStore] = None,
        providers: Optional[Sequence[ProviderAdapter]] = None,
    ) -> "DetectionEngine":
        if providers is None:
            providers = build_providers(settings)
        return cls(
            providers,
            config=ScoringConfig.from_settings(settings),
            ranges=load_vpn_ranges(settings.vpn_ranges_path),
            cache=cache if cache is not None else MemoryCache(),
            history=history,
            cache_ttl=settings.cache_ttl,
            timeout=settings.detection_timeout,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def detect(self, ip: str) -> VerdictResult:
        address = normalize_ip(ip)

        cached = await self._cache_get(address)
        if cached is not None:
            logger.debug("Cache hit for %s", address)
            return cached

        try:
            result = await asyncio.wait_for(self._evaluate(address), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Detection for %s exceeded %.1fs; discarding partial results", address, self.timeout)
            raise DetectionTimeoutError(f"Detection for {address} timed out after {self.timeout:.1f}s") from None

        logger.info(
            "Verdict for %s: %s (score=%d, confidence=%.2f)",
            address,
            result.verdict.value,
            result.score,
            result.confidence,
        )
        await self._cache_set(address, result)
        await self._record(result)
        return result

    async def collect(self, ip: str) -> ProviderBundle:
        """Query every provider concurrently; failures come back as unavailable results."""

        results = await asyncio.gather(*(provider.fetch(ip) for provider in self.providers))
        bundle = ProviderBundle(results)
        if bundle.unavailable_sources():
            logger.debug("Unavailable sources for %s: %s", ip, ", ".join(bundle.unavailable_sources()))
        return bundle

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _evaluate(self, ip: str) -> VerdictResult:
        bundle = await self.collect(ip)
        signals = self.heuristics.run(ip, bundle)
        return aggregate(ip, signals, self.config)

    async def _cache_get(self, ip: str) -> Optional[VerdictResult]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(cache_key(ip))
        except Exception:
            logger.warning("Cache read failed for %s; continuing uncached", ip, exc_info=True)
            return None

    async def _cache_set(self, ip: str, result: VerdictResult) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(cache_key(ip), result, self.cache_ttl)
        except Exception:
            logger.warning("Cache write failed for %s", ip, exc_info=True)

    async def _record(self, result: VerdictResult) -> None:
        if self.history is None:
            return
        # save() encrypts and rewrites the history file when persistent
        try:
            await asyncio.to_thread(self.history.save, result)
        except Exception:
            logger.exception("Failed to persist history for %s", result.ip)


__all__ = ["DetectionEngine", "DetectionTimeoutError", "InvalidIPAddressError", "normalize_ip"]
