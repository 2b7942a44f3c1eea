from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ipverdict.config import DEFAULT_VPN_RANGES
from ipverdict.heuristics import (
    CIDR_CHECK,
    GEO_CONSISTENCY,
    IP_INTELLIGENCE,
    HeuristicEngine,
    evaluate_cidr,
    evaluate_dnsbl,
    evaluate_geo_consistency,
    evaluate_intelligence,
    evaluate_network_quality,
    evaluate_port_scan,
    evaluate_reverse_dns,
    evaluate_whois,
    load_vpn_ranges,
)
from ipverdict.fusion import confirmation_bonus
from ipverdict.providers.base import ProviderBundle, ProviderResult
from ipverdict.scoring import Band


def _bundle(**sources):
    results = []
    for name, data in sources.items():
        if data is None:
            results.append(ProviderResult.unavailable(name, "timeout"))
        else:
            results.append(ProviderResult(source=name, data=data))
    return ProviderBundle(results)


def test_load_vpn_ranges_reads_packaged_file():
    ranges = load_vpn_ranges(DEFAULT_VPN_RANGES)
    assert ranges
    assert any(str(entry.network) == "185.93.0.0/16" for entry in ranges)


def test_load_vpn_ranges_skips_invalid_entries(tmp_path):
    path = tmp_path / "ranges.json"
    path.write_text(json.dumps(["10.8.0.0/16", "not-a-cidr", "2001:db8::/32"]), encoding="utf-8")
    ranges = load_vpn_ranges(path)
    assert [str(entry.network) for entry in ranges] == ["10.8.0.0/16", "2001:db8::/32"]


def test_load_vpn_ranges_missing_file(tmp_path):
    assert load_vpn_ranges(tmp_path / "missing.json") == ()


def test_cidr_match_and_miss():
    ranges = load_vpn_ranges(DEFAULT_VPN_RANGES)
    hit = evaluate_cidr("185.93.1.2", ranges)
    miss = evaluate_cidr("8.8.8.8", ranges)

    assert hit.triggered and hit.raw_score == 100.0 and hit.confidence == 1.0
    assert "Private Internet Access" in hit.details
    assert not miss.triggered and miss.raw_score == 0.0 and miss.confidence == 1.0


def test_cidr_without_ranges_is_absent():
    assert evaluate_cidr("8.8.8.8", ()) is None


def test_cidr_ipv6_address_against_ipv4_ranges():
    ranges = load_vpn_ranges(DEFAULT_VPN_RANGES)
    assert not evaluate_cidr("2001:db8::1", ranges).triggered


def test_port_scan_scales_and_caps():
    assert evaluate_port_scan(None) is None
    none_open = evaluate_port_scan({"open_ports": []})
    two_open = evaluate_port_scan({"open_ports": [1194, 8080]})
    many_open = evaluate_port_scan({"open_ports": [1194, 1723, 500, 4500, 1701, 8080, 3128]})

    assert not none_open.triggered and none_open.raw_score == 0.0
    assert two_open.triggered and two_open.raw_score == 40.0
    assert many_open.raw_score == 100.0


def test_reverse_dns_keyword_match():
    signal = evaluate_reverse_dns({"hostnames": ["us-nyc-12.vpn.example.net"]})
    assert signal.triggered
    assert signal.raw_score == 100.0
    assert "vpn" in signal.details


def test_reverse_dns_clean_hostname():
    signal = evaluate_reverse_dns({"hostnames": ["dsl-1-2-3-4.isp.example"]})
    assert not signal.triggered
    assert signal.raw_score == 0.0
    assert signal.weight > 0


def test_missing_ptr_is_neutral():
    signal = evaluate_reverse_dns({"hostnames": []})
    assert signal is not None
    assert not signal.triggered
    assert signal.weight == 0.0


def test_reverse_dns_unavailable_is_absent():
    assert evaluate_reverse_dns(None) is None


def test_whois_high_risk_counts_once():
    signal = evaluate_whois({"organization": "Anonymous VPN Proxy Ltd"})
    assert signal.raw_score == 30.0
    assert signal.triggered


def test_whois_general_keywords_add_per_distinct_hit():
    signal = evaluate_whois({"organization": "Example Cloud Hosting", "description": "hosting and cloud"})
    assert signal.raw_score == 30.0


def test_whois_is_capped():
    text = "VPN hosting datacenter data center cloud servers dedicated virtual private vps infrastructure"
    assert evaluate_whois({"organization": text}).raw_score == 90.0


def test_whois_without_keywords_or_data():
    clean = evaluate_whois({"organization": "Example Telecom Residential"})
    assert not clean.triggered and clean.raw_score == 0.0
    assert evaluate_whois({"organization": None, "description": None}) is None
    assert evaluate_whois(None) is None


def test_dnsbl_fraction_excludes_unanswered_lists():
    signal = evaluate_dnsbl({"listed": ["a.example"], "checked": ["a.example", "b.example"], "total": 4})
    assert signal.raw_score == 50.0
    assert signal.triggered
    assert signal.confidence == 0.5


def test_dnsbl_with_no_answers_is_absent():
    assert evaluate_dnsbl({"listed": [], "checked": [], "total": 6}) is None


def test_geo_mismatch_and_hosting():
    bundle = _bundle(
        ipinfo={"country": "NL"},
        ip_api={"country": "US", "hosting": True, "proxy": False},
        maxmind={"country": "US", "is_hosting_provider": True},
    )
    signal = evaluate_geo_consistency(bundle)

    assert signal.name == GEO_CONSISTENCY
    assert signal.raw_score == 90.0
    assert "reported by maxmind" in signal.details
    assert signal.confidence == 0.9
    assert "NL, US" in signal.details


def test_geo_consistent_sources():
    bundle = _bundle(ipinfo={"country": "DE"}, geolite={"country": "DE"}, ip_api={"country": "DE", "hosting": False})
    signal = evaluate_geo_consistency(bundle)
    assert not signal.triggered
    assert signal.raw_score == 0.0


def test_ip_api_hosting_counts_once():
    bundle = _bundle(ip_api={"country": "US", "hosting": True, "proxy": False})
    signals = [signal for signal in HeuristicEngine().run("192.0.2.40", bundle) if signal is not None]

    geo = next(signal for signal in signals if signal.name == GEO_CONSISTENCY)
    assert not geo.triggered
    assert [signal.name for signal in signals if signal.triggered] == [IP_INTELLIGENCE]
    assert confirmation_bonus(signals) == 0.0


def test_geo_hosting_from_abuseipdb_usage_type():
    bundle = _bundle(abuseipdb={"usage_type": "Data Center/Web Hosting/Transit", "country": None})
    signal = evaluate_geo_consistency(bundle)
    assert signal.raw_score == 50.0
    assert signal.confidence == 0.6


def test_geo_absent_without_sources():
    assert evaluate_geo_consistency(_bundle(ipinfo=None)) is None


def test_intelligence_averages_factors():
    bundle = _bundle(
        abuseipdb={"abuse_confidence": 20.0},
        ipqualityscore={"fraud_score": 40.0, "vpn": False, "proxy": False, "tor": False},
    )
    signal = evaluate_intelligence(bundle)

    assert signal.name == IP_INTELLIGENCE
    assert signal.raw_score == 30.0
    assert not signal.triggered
    assert signal.confidence == pytest.approx(0.7)


def test_intelligence_flag_triggers():
    bundle = _bundle(proxycheck={"proxy": True, "type": "VPN", "risk": 10.0})
    signal = evaluate_intelligence(bundle)

    assert signal.triggered
    assert signal.raw_score == 55.0
    assert "proxycheck:vpn" in signal.details


def test_intelligence_ip_api_hosting_factor():
    signal = evaluate_intelligence(_bundle(ip_api={"proxy": False, "hosting": True}))
    assert signal.raw_score == 80.0
    assert signal.triggered


def test_intelligence_absent_when_no_provider_answered():
    assert evaluate_intelligence(_bundle(abuseipdb=None, ipqualityscore=None)) is None


def test_band_scoring_has_no_zero_step():
    band = Band(suspicious=150.0, high=300.0)
    assert band.score(75.0) == pytest.approx(0.15)
    assert band.score(150.0) == pytest.approx(0.3)
    assert band.score(151.0) == 0.7
    assert band.score(301.0) == 1.0


def test_network_quality_needs_three_valid_samples():
    assert evaluate_network_quality({"samples": [20.0, None, 22.0, None]}) is None
    assert evaluate_network_quality(None) is None


def test_network_quality_clean_link():
    signal = evaluate_network_quality({"samples": [20.0, 20.0, 20.0, 20.0, 20.0]})
    assert not signal.triggered
    assert 0.0 < signal.raw_score < 10.0
    assert signal.confidence == pytest.approx(0.425)


def test_network_quality_degraded_link():
    signal = evaluate_network_quality({"samples": [320.0, 400.0, 310.0, None, 500.0]})
    assert signal.triggered
    assert "latency" in signal.details and "packet loss" in signal.details
    assert signal.raw_score > 70.0


def test_engine_runs_in_fixed_order_with_absent_entries():
    engine = HeuristicEngine(ranges=load_vpn_ranges(DEFAULT_VPN_RANGES))
    bundle = _bundle(port_scan={"open_ports": [1194]}, reverse_dns=None)
    signals = engine.run("185.93.1.2", bundle)

    assert len(signals) == 8
    assert signals[0].name == CIDR_CHECK
    assert signals[1].raw_score == 20.0
    assert signals[2] is None
    assert all(signal is None for signal in signals[3:])
