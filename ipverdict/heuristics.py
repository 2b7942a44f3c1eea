"""Signal evaluators: turn normalised provider data into scored signals.

Each ``evaluate_*`` function is pure. It returns a :class:`SignalResult`, or
``None`` when the underlying source did not answer or the signal cannot be
computed. ``None`` is excluded from aggregation rather than counted as clean.
"""
from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from statistics import mean, pstdev
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .providers.base import ProviderBundle
from .scoring import DEFAULT_SCORING, ScoringConfig
from .signals import SignalResult

logger = logging.getLogger(__name__)

CIDR_CHECK = "CIDR_CHECK"
PORT_SCAN = "PORT_SCAN"
REVERSE_DNS = "REVERSE_DNS"
WHOIS_CHECK = "WHOIS_CHECK"
DNSBL = "DNSBL"
GEO_CONSISTENCY = "GEO_CONSISTENCY"
IP_INTELLIGENCE = "IP_INTELLIGENCE"
NETWORK_QUALITY = "NETWORK_QUALITY"

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

# provider name -> key holding an ISO country code
_COUNTRY_SOURCES = (
    ("ipinfo", "country"),
    ("ip_api", "country"),
    ("ipqualityscore", "country"),
    ("proxycheck", "country"),
    ("maxmind", "country"),
    ("geolite", "country"),
)
_INTELLIGENCE_SOURCES = ("abuseipdb", "ipqualityscore", "proxycheck", "ip_api", "maxmind")
_HOSTING_USAGE_MARKERS = ("data center", "hosting")


@dataclass(frozen=True)
class VpnRange:
    network: Network
    label: str = ""


def load_vpn_ranges(path: Union[str, Path]) -> tuple[VpnRange, ...]:
    """Load curated ranges from JSON.

    Accepts either ``{"ranges": [{"cidr": ..., "label": ...}]}`` or a plain list of
    CIDR strings. Malformed entries are skipped with a warning.
    """

    source = Path(path)
    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError:
        logger.warning("VPN range file %s not found; CIDR check disabled", source)
        return ()
    except json.JSONDecodeError as exc:
        logger.warning("VPN range file %s is not valid JSON: %s", source, exc)
        return ()

    entries = payload.get("ranges", []) if isinstance(payload, Mapping) else payload
    ranges: List[VpnRange] = []
    for entry in entries or ():
        if isinstance(entry, str):
            cidr, label = entry, ""
        elif isinstance(entry, Mapping):
            cidr, label = str(entry.get("cidr") or ""), str(entry.get("label") or "")
        else:
            continue
        try:
            ranges.append(VpnRange(network=ipaddress.ip_network(cidr.strip(), strict=False), label=label))
        except ValueError:
            logger.warning("Skipping invalid CIDR %r in %s", cidr, source)
    return tuple(ranges)


# ----------------------------------------------------------------------
# Evaluators
# ----------------------------------------------------------------------
def evaluate_cidr(
    ip: str, ranges: Sequence[VpnRange], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if not ranges:
        return None
    address = ipaddress.ip_address(ip)
    for entry in ranges:
        if address.version == entry.network.version and address in entry.network:
            label = f" ({entry.label})" if entry.label else ""
            return SignalResult(
                name=CIDR_CHECK,
                triggered=True,
                raw_score=100.0,
                weight=config.cidr_weight,
                confidence=1.0,
                details=f"IP is in known VPN/hosting range {entry.network}{label}",
            )
    return SignalResult(
        name=CIDR_CHECK,
        triggered=False,
        raw_score=0.0,
        weight=config.cidr_weight,
        confidence=1.0,
        details=f"IP not in any of {len(ranges)} known VPN/hosting ranges",
    )


def evaluate_port_scan(
    data: Optional[Mapping[str, object]], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if data is None:
        return None
    open_ports = sorted({int(port) for port in data.get("open_ports") or ()})
    score = min(100.0, config.points_per_open_port * len(open_ports))
    if open_ports:
        details = "Open VPN/proxy ports: " + ", ".join(str(port) for port in open_ports)
    else:
        details = "No common VPN/proxy ports open"
    return SignalResult(
        name=PORT_SCAN,
        triggered=bool(open_ports),
        raw_score=score,
        weight=config.port_scan_weight,
        confidence=config.port_scan_confidence,
        details=details,
    )


def evaluate_reverse_dns(
    data: Optional[Mapping[str, object]], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if data is None:
        return None
    hostnames = [str(name).lower() for name in data.get("hostnames") or ()]
    if not hostnames:
        # a missing PTR record is recorded but does not move the score
        return SignalResult(
            name=REVERSE_DNS,
            triggered=False,
            raw_score=0.0,
            weight=0.0,
            confidence=config.reverse_dns_confidence,
            details="No PTR record",
        )
    for hostname in hostnames:
        matched = [keyword for keyword in config.hostname_keywords if keyword in hostname]
        if matched:
            return SignalResult(
                name=REVERSE_DNS,
                triggered=True,
                raw_score=100.0,
                weight=config.reverse_dns_weight,
                confidence=config.reverse_dns_confidence,
                details=f"Hostname {hostname} matches {', '.join(matched)}",
            )
    return SignalResult(
        name=REVERSE_DNS,
        triggered=False,
        raw_score=0.0,
        weight=config.reverse_dns_weight,
        confidence=config.reverse_dns_confidence,
        details="Hostname " + ", ".join(hostnames) + " has no VPN/proxy keywords",
    )


def evaluate_whois(
    data: Optional[Mapping[str, object]], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if data is None:
        return None
    fields = [data.get(key) for key in ("organization", "description", "network_name")]
    text = " ".join(str(value) for value in fields if value).lower()
    if not text.strip():
        return None

    high_risk = [keyword for keyword in config.whois_high_risk_keywords if keyword in text]
    general = sorted({keyword for keyword in config.whois_general_keywords if keyword in text})
    score = 0.0
    if high_risk:
        score += config.whois_high_risk_points
    score += config.whois_general_points * len(general)
    score = min(config.whois_ceiling, score)

    matched = high_risk + general
    organization = data.get("organization") or data.get("network_name") or "unknown"
    if matched:
        details = f"Organization {organization} matches {', '.join(matched)}"
    else:
        details = f"Organization {organization} has no hosting/VPN keywords"
    return SignalResult(
        name=WHOIS_CHECK,
        triggered=score > 0,
        raw_score=score,
        weight=config.whois_weight,
        confidence=config.whois_confidence,
        details=details,
    )


def evaluate_dnsbl(
    data: Optional[Mapping[str, object]], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if data is None:
        return None
    checked = list(data.get("checked") or ())
    if not checked:
        return None
    listed = [zone for zone in data.get("listed") or () if zone in checked]
    total = max(int(data.get("total") or len(checked)), len(checked))
    score = 100.0 * len(listed) / len(checked)
    if listed:
        details = f"Listed on {len(listed)}/{len(checked)} blocklists: " + ", ".join(listed)
    else:
        details = f"Not listed on {len(checked)} blocklists"
    return SignalResult(
        name=DNSBL,
        triggered=bool(listed),
        raw_score=score,
        weight=config.dnsbl_weight,
        confidence=len(checked) / total,
        details=details,
    )


def evaluate_geo_consistency(
    bundle: ProviderBundle, config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    countries: Dict[str, str] = {}
    for source, key in _COUNTRY_SOURCES:
        data = bundle.data(source)
        if data and data.get(key):
            countries[source] = str(data[key]).upper()

    # ip-api hosting is scored by IP_INTELLIGENCE only.
    hosting_flags: Dict[str, bool] = {}
    maxmind = bundle.data("maxmind")
    if maxmind is not None and maxmind.get("is_hosting_provider") is not None:
        hosting_flags["maxmind"] = bool(maxmind["is_hosting_provider"])
    abuse = bundle.data("abuseipdb")
    if abuse is not None and abuse.get("usage_type"):
        usage = str(abuse["usage_type"]).lower()
        hosting_flags["abuseipdb"] = any(marker in usage for marker in _HOSTING_USAGE_MARKERS)

    if not countries and not hosting_flags:
        return None

    score = 0.0
    reasons: List[str] = []
    distinct = sorted(set(countries.values()))
    if len(distinct) >= 2:
        score += config.geo_mismatch_points
        reasons.append("Inconsistent location data: " + ", ".join(distinct))
    flagged = sorted(source for source, flag in hosting_flags.items() if flag)
    if flagged:
        score += config.hosting_flag_points
        reasons.append("Datacenter/hosting network reported by " + ", ".join(flagged))
    score = min(100.0, score)

    if not reasons:
        reasons.append(f"Location consistent across {len(countries)} source(s)" if countries else "No hosting flags")
    return SignalResult(
        name=GEO_CONSISTENCY,
        triggered=score > 0,
        raw_score=score,
        weight=config.geo_weight,
        confidence=0.9 if len(countries) >= 2 else 0.6,
        details="; ".join(reasons),
    )


def evaluate_intelligence(
    bundle: ProviderBundle, config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if not any(bundle.data(source) is not None for source in _INTELLIGENCE_SOURCES):
        return None

    factors: List[float] = []
    flags: List[str] = []

    abuse = bundle.data("abuseipdb")
    if abuse is not None and abuse.get("abuse_confidence") is not None:
        factors.append(float(abuse["abuse_confidence"]))

    ipqs = bundle.data("ipqualityscore")
    if ipqs is not None:
        if ipqs.get("fraud_score") is not None:
            factors.append(float(ipqs["fraud_score"]))
        flags.extend(f"ipqualityscore:{key}" for key in ("vpn", "proxy", "tor") if ipqs.get(key))

    proxycheck = bundle.data("proxycheck")
    if proxycheck is not None:
        if proxycheck.get("risk") is not None:
            factors.append(float(proxycheck["risk"]))
        if proxycheck.get("proxy"):
            kind = str(proxycheck.get("type") or "proxy").lower()
            flags.append(f"proxycheck:{kind}")

    ip_api = bundle.data("ip_api")
    if ip_api is not None:
        if ip_api.get("proxy"):
            factors.append(config.ip_api_proxy_points)
        elif ip_api.get("hosting"):
            factors.append(config.ip_api_hosting_points)
        else:
            factors.append(0.0)

    maxmind = bundle.data("maxmind")
    if maxmind is not None:
        for key, label in (
            ("is_anonymous_vpn", "vpn"),
            ("is_public_proxy", "proxy"),
            ("is_tor_exit_node", "tor"),
        ):
            if maxmind.get(key):
                flags.append(f"maxmind:{label}")

    if flags:
        factors.append(100.0)

    if not factors:
        return None

    score = max(0.0, min(100.0, mean(factors)))
    triggered = bool(flags) or score >= config.intelligence_trigger_score
    parts = [f"Reputation score {score:.0f} from {len(factors)} factor(s)"]
    if flags:
        parts.append("flagged by " + ", ".join(flags))
    return SignalResult(
        name=IP_INTELLIGENCE,
        triggered=triggered,
        raw_score=score,
        weight=config.intelligence_weight,
        confidence=min(1.0, 0.4 + 0.15 * len(factors)),
        details="; ".join(parts),
    )


def evaluate_network_quality(
    data: Optional[Mapping[str, object]], config: ScoringConfig = DEFAULT_SCORING
) -> Optional[SignalResult]:
    if data is None:
        return None
    samples = list(data.get("samples") or ())
    valid = [float(sample) for sample in samples if sample is not None]
    if len(valid) < config.min_latency_samples:
        return None

    rtt = mean(valid)
    jitter = pstdev(valid)
    packet_loss = 100.0 * (len(samples) - len(valid)) / len(samples)

    band_scores = (
        config.rtt_band.score(rtt),
        config.jitter_band.score(jitter),
        config.packet_loss_band.score(packet_loss),
    )
    exceeded = [
        label
        for label, band, value in (
            ("latency", config.rtt_band, rtt),
            ("jitter", config.jitter_band, jitter),
            ("packet loss", config.packet_loss_band, packet_loss),
        )
        if band.exceeded(value)
    ]
    details = f"RTT {rtt:.1f}ms, jitter {jitter:.1f}ms, loss {packet_loss:.1f}%"
    if exceeded:
        details += " (elevated " + ", ".join(exceeded) + ")"
    return SignalResult(
        name=NETWORK_QUALITY,
        triggered=bool(exceeded),
        raw_score=min(100.0, 100.0 * mean(band_scores)),
        weight=config.network_weight,
        confidence=config.network_confidence * min(1.0, len(valid) / config.full_confidence_samples),
        details=details,
    )


# ----------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------
class HeuristicEngine:
    """Run every evaluator over one provider bundle in a fixed order."""

    def __init__(self, config: ScoringConfig = DEFAULT_SCORING, ranges: Iterable[VpnRange] = ()) -> None:
        self.config = config
        self.ranges = tuple(ranges)

    def run(self, ip: str, bundle: ProviderBundle) -> tuple[Optional[SignalResult], ...]:
        config = self.config
        signals = (
            evaluate_cidr(ip, self.ranges, config),
            evaluate_port_scan(bundle.data("port_scan"), config),
            evaluate_reverse_dns(bundle.data("reverse_dns"), config),
            evaluate_whois(bundle.data("whois"), config),
            evaluate_dnsbl(bundle.data("dnsbl"), config),
            evaluate_geo_consistency(bundle, config),
            evaluate_intelligence(bundle, config),
            evaluate_network_quality(bundle.data("latency"), config),
        )
        logger.debug(
            "Evaluated %s: %d signal(s) available, %d absent",
            ip,
            sum(1 for signal in signals if signal is not None),
            sum(1 for signal in signals if signal is None),
        )
        return signals


__all__ = [
    "CIDR_CHECK",
    "DNSBL",
    "GEO_CONSISTENCY",
    "HeuristicEngine",
    "IP_INTELLIGENCE",
    "NETWORK_QUALITY",
    "PORT_SCAN",
    "REVERSE_DNS",
    "VpnRange",
    "WHOIS_CHECK",
    "evaluate_cidr",
    "evaluate_dnsbl",
    "evaluate_geo_consistency",
    "evaluate_intelligence",
    "evaluate_network_quality",
    "evaluate_port_scan",
    "evaluate_reverse_dns",
    "evaluate_whois",
    "load_vpn_ranges",
]
