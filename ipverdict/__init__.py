"""VPN/proxy detection by multi-signal scoring."""

from .engine import DetectionEngine, DetectionTimeoutError, InvalidIPAddressError
from .fusion import AggregationInvariantError, aggregate
from .heuristics import HeuristicEngine, load_vpn_ranges
from .scoring import DEFAULT_SCORING, ScoringConfig
from .signals import Anomaly, Severity, SignalResult, Verdict, VerdictResult

__all__ = [
    "AggregationInvariantError",
    "Anomaly",
    "DEFAULT_SCORING",
    "DetectionEngine",
    "DetectionTimeoutError",
    "HeuristicEngine",
    "InvalidIPAddressError",
    "ScoringConfig",
    "Severity",
    "SignalResult",
    "Verdict",
    "VerdictResult",
    "aggregate",
    "load_vpn_ranges",
]
