"""Scoring constants shared by the evaluators and the aggregator."""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple


@dataclass(frozen=True)
class Band:
    """Two-level threshold band (suspicious / high) for a continuous metric."""

    suspicious: float
    high: float

    def score(self, value: float) -> float:
        """Map ``value`` onto 0..1.

        Below the suspicious threshold the score grows linearly up to 0.3, so the
        curve has no jump to zero at the boundary.
        """

        if value > self.high:
            return 1.0
        if value > self.suspicious:
            return 0.7
        if self.suspicious <= 0:
            return 0.0
        return max(0.0, 0.3 * (value / self.suspicious))

    def exceeded(self, value: float) -> bool:
        return value > self.suspicious


@dataclass(frozen=True)
class ScoringConfig:
    """Every weight, threshold and keyword used to score an address.

    Weights are per-signal importance in 0..1. They need not sum to 1 because the
    aggregator normalises by the weights of the signals that were available.
    """

    # verdict threshold: score >= threshold -> PROXY_VPN
    threshold: float = 50.0

    cidr_weight: float = 0.40
    intelligence_weight: float = 0.35
    port_scan_weight: float = 0.20
    reverse_dns_weight: float = 0.20
    whois_weight: float = 0.20
    geo_weight: float = 0.20
    dnsbl_weight: float = 0.15
    network_weight: float = 0.15

    # multi-confirmation bonus
    triple_confirmation_bonus: float = 15.0
    double_confirmation_bonus: float = 7.0

    # port scan
    points_per_open_port: float = 20.0
    port_scan_confidence: float = 0.7

    # reverse DNS
    hostname_keywords: Tuple[str, ...] = ("vpn", "proxy", "tor", "exit", "relay")
    reverse_dns_confidence: float = 0.8

    # WHOIS / organisation text
    whois_high_risk_keywords: Tuple[str, ...] = ("vpn", "proxy", "anonymous")
    whois_general_keywords: Tuple[str, ...] = (
        "hosting",
        "datacenter",
        "data center",
        "cloud",
        "servers",
        "dedicated",
        "virtual private",
        "vps",
        "infrastructure",
    )
    whois_high_risk_points: float = 30.0
    whois_general_points: float = 15.0
    whois_ceiling: float = 90.0
    whois_confidence: float = 0.6

    # geographic / ASN consistency
    geo_mismatch_points: float = 40.0
    hosting_flag_points: float = 50.0

    # third-party intelligence
    intelligence_trigger_score: float = 50.0
    ip_api_proxy_points: float = 100.0
    ip_api_hosting_points: float = 80.0

    # latency / jitter / packet loss
    rtt_band: Band = Band(suspicious=150.0, high=300.0)
    jitter_band: Band = Band(suspicious=30.0, high=50.0)
    packet_loss_band: Band = Band(suspicious=5.0, high=10.0)
    min_latency_samples: int = 3
    full_confidence_samples: int = 10
    network_confidence: float = 0.85

    def with_threshold(self, threshold: float) -> "ScoringConfig":
        return replace(self, threshold=float(threshold))

    @classmethod
    def from_settings(cls, settings) -> "ScoringConfig":
        config = cls()
        threshold = getattr(settings, "verdict_threshold", None)
        if threshold is not None:
            config = config.with_threshold(threshold)
        return config


DEFAULT_SCORING = ScoringConfig()


__all__ = ["Band", "ScoringConfig", "DEFAULT_SCORING"]
