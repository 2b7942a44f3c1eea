"""TCP level probes: VPN port scan and connect-latency sampling."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence

from .base import ProviderAdapter

logger = logging.getLogger(__name__)

# OpenVPN, PPTP, IKE, IPSec NAT-T, L2TP, HTTP proxy, Squid
DEFAULT_VPN_PORTS: tuple[int, ...] = (1194, 1723, 500, 4500, 1701, 8080, 3128)


@dataclass(frozen=True)
class ProbeResult:
    port: int
    open: bool
    latency_ms: int

    def as_dict(self) -> dict[str, object]:
        return {"port": self.port, "open": self.open, "latency_ms": self.latency_ms}


class PortProbe:
    """Single TCP connect probe with a hard timeout."""

    async def probe(self, ip: str, port: int, timeout_ms: int) -> ProbeResult:
        started = time.perf_counter()
        try:
            _, writer = await asyncio.wait_for(asyncio.open_connection(ip, port), timeout=timeout_ms / 1000.0)
        except (asyncio.TimeoutError, OSError):
            return ProbeResult(port=port, open=False, latency_ms=timeout_ms)
        latency_ms = int((time.perf_counter() - started) * 1000)
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass
        return ProbeResult(port=port, open=True, latency_ms=latency_ms)


class PortScanProvider(ProviderAdapter):
    """Probe well-known VPN and proxy ports concurrently."""

    name = "port_scan"

    def __init__(
        self,
        *,
        ports: Sequence[int] = DEFAULT_VPN_PORTS,
        probe_timeout_ms: int = 500,
        probe: Optional[PortProbe] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("timeout", probe_timeout_ms / 1000.0 + 1.0)
        super().__init__(**kwargs)
        self._ports = tuple(ports)
        self._probe_timeout_ms = probe_timeout_ms
        self._probe = probe or PortProbe()

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        results = await asyncio.gather(
            *(self._probe.probe(ip, port, self._probe_timeout_ms) for port in self._ports)
        )
        open_ports = [result.port for result in results if result.open]
        if open_ports:
            logger.debug("Open VPN/proxy ports on %s: %s", ip, open_ports)
        return {
            "probes": [result.as_dict() for result in results],
            "open_ports": open_ports,
            "scanned": len(results),
        }


class LatencyProvider(ProviderAdapter):
    """Sample TCP connect round-trip times to approximate latency, jitter and loss."""

    name = "latency"

    def __init__(
        self,
        *,
        port: int = 443,
        samples: int = 5,
        sample_timeout_ms: int = 1000,
        interval: float = 0.05,
        probe: Optional[PortProbe] = None,
        **kwargs,
    ) -> None:
        kwargs.setdefault("timeout", samples * (sample_timeout_ms / 1000.0 + interval) + 1.0)
        super().__init__(**kwargs)
        self._port = port
        self._samples = samples
        self._sample_timeout_ms = sample_timeout_ms
        self._interval = interval
        self._probe = probe or PortProbe()

    async def _fetch(self, ip: str) -> Mapping[str, Any]:
        samples: List[Optional[float]] = []
        for index in range(self._samples):
            result = await self._probe.probe(ip, self._port, self._sample_timeout_ms)
            samples.append(float(result.latency_ms) if result.open else None)
            if index + 1 < self._samples and self._interval:
                await asyncio.sleep(self._interval)
        return {"port": self._port, "samples": samples}


__all__ = ["DEFAULT_VPN_PORTS", "LatencyProvider", "PortProbe", "PortScanProvider", "ProbeResult"]
