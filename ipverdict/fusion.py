"""Signal fusion: combine evaluator output into one verdict."""
from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from .scoring import DEFAULT_SCORING, ScoringConfig
from .signals import Anomaly, Severity, SignalResult, Verdict, VerdictResult

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class AggregationInvariantError(ValueError):
    """Raised when a signal violates the aggregator's input contract."""


def aggregate(
    ip: str,
    signals: Sequence[Optional[SignalResult]],
    config: ScoringConfig = DEFAULT_SCORING,
    *,
    timestamp: Optional[datetime] = None,
) -> VerdictResult:
    """Fuse evaluator output into a :class:`VerdictResult`.

    ``None`` entries are absent signals. They are dropped before scoring so that a
    missing provider neither lowers nor raises the score. The score is the weight
    normalised average of the available raw scores plus a bonus for independent
    corroboration. Reordering ``signals`` changes only the order of
    ``VerdictResult.signals``.
    """

    available = [signal for signal in signals if signal is not None]
    for signal in available:
        _check_signal(signal)

    total_weight = math.fsum(signal.weight for signal in available)
    extra = {} if timestamp is None else {"timestamp": timestamp}

    if total_weight <= 0.0:
        logger.debug("No weighted signals available for %s", ip)
        return VerdictResult(
            ip=ip,
            score=0,
            verdict=Verdict.ORIGINAL,
            confidence=0.0,
            signals=tuple(available),
            anomalies=(
                Anomaly(
                    type=INSUFFICIENT_DATA,
                    severity=Severity.MEDIUM,
                    details="No signal source returned usable data; verdict defaults to ORIGINAL",
                ),
            ),
            **extra,
        )

    weighted_sum = math.fsum(signal.weighted_score() for signal in available)
    base_score = weighted_sum / total_weight
    bonus = confirmation_bonus(available, config)
    score = int(round(max(0.0, min(100.0, base_score + bonus))))

    weighted_confidence = math.fsum(signal.confidence * signal.weight for signal in available)
    confidence = round(max(0.0, min(100.0, weighted_confidence / total_weight * 100.0)), 2)

    verdict = verdict_for(score, config)
    anomalies = collect_anomalies(available)

    return VerdictResult(
        ip=ip,
        score=score,
        verdict=verdict,
        confidence=confidence,
        signals=tuple(available),
        anomalies=anomalies,
        **extra,
    )


def verdict_for(score: float, config: ScoringConfig = DEFAULT_SCORING) -> Verdict:
    if score >= config.threshold:
        return Verdict.PROXY_VPN
    return Verdict.ORIGINAL


def confirmation_bonus(signals: Iterable[SignalResult], config: ScoringConfig = DEFAULT_SCORING) -> float:
    """Bonus for independent triggered signals; each signal name counts once."""

    confirmations = {signal.name for signal in signals if signal.triggered and signal.weight > 0.0}
    if len(confirmations) >= 3:
        return config.triple_confirmation_bonus
    if len(confirmations) == 2:
        return config.double_confirmation_bonus
    return 0.0


def collect_anomalies(signals: Iterable[SignalResult]) -> tuple[Anomaly, ...]:
    found: set[Anomaly] = set()
    for signal in signals:
        if not signal.triggered:
            continue
        severity = Severity.for_score(signal.raw_score)
        if severity is Severity.LOW:
            continue
        found.add(Anomaly(type=signal.name, severity=severity, details=signal.details))
    return tuple(sorted(found, key=Anomaly.sort_key))


def _check_signal(signal: SignalResult) -> None:
    problems: List[str] = []
    if not 0.0 <= signal.weight <= 1.0:
        problems.append(f"weight {signal.weight!r} outside [0, 1]")
    if not 0.0 <= signal.raw_score <= 100.0:
        problems.append(f"raw_score {signal.raw_score!r} outside [0, 100]")
    if not 0.0 <= signal.confidence <= 1.0:
        problems.append(f"confidence {signal.confidence!r} outside [0, 1]")
    if problems:
        raise AggregationInvariantError(f"Signal {signal.name}: " + "; ".join(problems))


__all__ = [
    "AggregationInvariantError",
    "INSUFFICIENT_DATA",
    "aggregate",
    "collect_anomalies",
    "confirmation_bonus",
    "verdict_for",
]
