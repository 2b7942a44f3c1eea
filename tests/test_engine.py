from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ipverdict.cache import MemoryCache, cache_key
from ipverdict.config import DEFAULT_VPN_RANGES, Settings
from ipverdict.engine import DetectionEngine, DetectionTimeoutError, InvalidIPAddressError, normalize_ip
from ipverdict.fusion import INSUFFICIENT_DATA
from ipverdict.heuristics import load_vpn_ranges
from ipverdict.providers.base import ProviderAdapter, ProviderUnavailable
from ipverdict.signals import Verdict
from ipverdict.store import HistoryStore


class StaticProvider(ProviderAdapter):
    def __init__(self, name, data, *, delay=0.0, **kwargs):
        super().__init__(**kwargs)
        self.name = name
        self.data = data
        self.delay = delay
        self.calls = 0

    async def _fetch(self, ip):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.data is None:
            raise ProviderUnavailable("no data")
        return self.data


class BrokenCache:
    async def get(self, key):
        raise ConnectionError("cache down")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("cache down")


class BrokenHistory(HistoryStore):
    def save(self, result):
        raise OSError("disk full")


class ThreadRecordingHistory(HistoryStore):
    def __init__(self):
        super().__init__()
        self.threads = []

    def save(self, result):
        self.threads.append(threading.get_ident())
        return super().save(result)


def _proxy_providers():
    return [
        StaticProvider("port_scan", {"open_ports": [1194, 1723, 8080]}),
        StaticProvider("reverse_dns", {"hostnames": ["nl-ams-vpn-03.example.net"]}),
        StaticProvider("whois", {"organization": "Example VPN Hosting B.V."}),
        StaticProvider("ip_api", {"country": "NL", "hosting": True, "proxy": True}),
        StaticProvider("ipinfo", {"country": "NL"}),
    ]


def _engine(providers, **kwargs):
    kwargs.setdefault("ranges", load_vpn_ranges(DEFAULT_VPN_RANGES))
    return DetectionEngine(providers, **kwargs)


def test_normalize_ip_rejects_garbage():
    assert normalize_ip(" 2001:DB8::1 ") == "2001:db8::1"
    for value in ("", "999.1.1.1", "not-an-ip", None):
        with pytest.raises(InvalidIPAddressError):
            normalize_ip(value)


def test_invalid_ip_is_rejected_before_providers_run():
    provider = StaticProvider("ip_api", {"country": "US"})
    engine = _engine([provider])
    with pytest.raises(InvalidIPAddressError):
        asyncio.run(engine.detect("300.1.2.3"))
    assert provider.calls == 0


def test_detect_flags_vpn_endpoint():
    engine = _engine(_proxy_providers())
    result = asyncio.run(engine.detect("185.93.4.5"))

    assert result.verdict is Verdict.PROXY_VPN
    assert result.score >= 80
    names = [signal.name for signal in result.signals]
    assert names[:4] == ["CIDR_CHECK", "PORT_SCAN", "REVERSE_DNS", "WHOIS_CHECK"]
    assert {anomaly.type for anomaly in result.anomalies} >= {"CIDR_CHECK", "REVERSE_DNS"}


def test_detect_clean_residential_address():
    providers = [
        StaticProvider("port_scan", {"open_ports": []}),
        StaticProvider("reverse_dns", {"hostnames": ["cpe-1-2-3-4.home.example"]}),
        StaticProvider("whois", {"organization": "Example Broadband Residential"}),
        StaticProvider("ip_api", {"country": "US", "hosting": False, "proxy": False}),
        StaticProvider("ipinfo", {"country": "US"}),
        StaticProvider("latency", {"samples": [25.0, 27.0, 24.0, 26.0, 25.0]}),
    ]
    result = asyncio.run(_engine(providers).detect("8.8.4.4"))

    assert result.verdict is Verdict.ORIGINAL
    assert result.score < 10
    assert result.anomalies == ()


def test_total_outage_still_returns_verdict():
    providers = [StaticProvider(name, None) for name in ("port_scan", "reverse_dns", "whois", "ip_api")]
    result = asyncio.run(_engine(providers, ranges=()).detect("192.0.2.10"))

    assert result.score == 0
    assert result.confidence == 0.0
    assert result.verdict is Verdict.ORIGINAL
    assert result.anomalies[0].type == INSUFFICIENT_DATA


def test_slow_provider_is_dropped_not_awaited():
    providers = _proxy_providers() + [StaticProvider("abuseipdb", {"abuse_confidence": 0.0}, delay=5, timeout=0.05)]
    result = asyncio.run(_engine(providers).detect("185.93.4.5"))
    assert result.verdict is Verdict.PROXY_VPN


def test_result_is_cached_and_reused():
    providers = _proxy_providers()
    cache = MemoryCache()
    engine = _engine(providers, cache=cache)

    async def scenario():
        first = await engine.detect("185.93.4.5")
        second = await engine.detect("185.93.4.5")
        cached = await cache.get(cache_key("185.93.4.5"))
        return first, second, cached

    first, second, cached = asyncio.run(scenario())
    assert providers[0].calls == 1
    assert second == first
    assert cached == first


def test_cache_failures_are_treated_as_miss():
    engine = _engine(_proxy_providers(), cache=BrokenCache())
    result = asyncio.run(engine.detect("185.93.4.5"))
    assert result.verdict is Verdict.PROXY_VPN


def test_history_failure_does_not_reach_caller():
    engine = _engine(_proxy_providers(), history=BrokenHistory())
    result = asyncio.run(engine.detect("185.93.4.5"))
    assert result.verdict is Verdict.PROXY_VPN


def test_history_receives_result():
    history = HistoryStore()
    engine = _engine(_proxy_providers(), history=history)
    result = asyncio.run(engine.detect("185.93.4.5"))

    assert len(history) == 1
    assert history.query().records[0].result == result


def test_history_write_runs_off_the_event_loop():
    history = ThreadRecordingHistory()
    engine = _engine(_proxy_providers(), history=history)
    asyncio.run(engine.detect("185.93.4.5"))

    assert len(history) == 1
    assert history.threads
    assert threading.get_ident() not in history.threads


def test_overall_timeout_raises_without_partial_result():
    history = HistoryStore()
    cache = MemoryCache()
    providers = [StaticProvider("whois", {"organization": "VPN"}, delay=5, timeout=10)]
    engine = _engine(providers, timeout=0.05, history=history, cache=cache)

    with pytest.raises(DetectionTimeoutError):
        asyncio.run(engine.detect("203.0.113.50"))
    assert len(history) == 0
    assert len(cache) == 0


def test_from_settings_uses_threshold_and_ranges(tmp_path):
    settings = Settings(
        _env_file=None,
        data_directory=tmp_path,
        verdict_threshold=70,
        vpn_ranges_path=DEFAULT_VPN_RANGES,
        port_scan_enabled=False,
        latency_enabled=False,
        dns_enabled=False,
        rdap_enabled=False,
        ip_api_enabled=False,
    )
    engine = DetectionEngine.from_settings(settings, providers=[])

    assert engine.config.threshold == 70.0
    assert engine.heuristics.ranges
    assert engine.cache_ttl == 3600
    result = asyncio.run(engine.detect("185.93.4.5"))
    assert result.score == 100
