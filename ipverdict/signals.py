"""Signal and verdict records produced by the ipverdict scoring core."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Mapping, Sequence


__all__ = [
    "Anomaly",
    "Severity",
    "SignalResult",
    "Verdict",
    "VerdictResult",
]


class Verdict(str, Enum):
    PROXY_VPN = "PROXY_VPN"
    ORIGINAL = "ORIGINAL"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def for_score(cls, raw_score: float) -> "Severity":
        """Band a 0-100 severity score: low <30, medium 30-70, high >70."""

        if raw_score > 70.0:
            return cls.HIGH
        if raw_score >= 30.0:
            return cls.MEDIUM
        return cls.LOW

    @property
    def rank(self) -> int:
        return {"low": 0, "medium": 1, "high": 2}[self.value]


@dataclass
class SignalResult:
    """Output of one signal evaluator."""

    name: str
    triggered: bool
    raw_score: float
    weight: float
    confidence: float
    details: str = ""

    def weighted_score(self) -> float:
        """Return the weighted score used for fusion."""

        return self.raw_score * self.weight

    def as_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "triggered": self.triggered,
            "raw_score": self.raw_score,
            "weight": self.weight,
            "confidence": self.confidence,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "SignalResult":
        return cls(
            name=str(payload["name"]),
            triggered=bool(payload.get("triggered", False)),
            raw_score=float(payload.get("raw_score", 0.0)),
            weight=float(payload.get("weight", 0.0)),
            confidence=float(payload.get("confidence", 0.0)),
            details=str(payload.get("details") or ""),
        )


@dataclass(frozen=True)
class Anomaly:
    """Severity tagged finding surfaced for operator review."""

    type: str
    severity: Severity
    details: str

    def sort_key(self) -> tuple[int, str, str]:
        return (-self.severity.rank, self.type, self.details)

    def as_dict(self) -> dict[str, str]:
        return {"type": self.type, "severity": self.severity.value, "details": self.details}

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "Anomaly":
        return cls(
            type=str(payload["type"]),
            severity=Severity(str(payload.get("severity", "low"))),
            details=str(payload.get("details") or ""),
        )


@dataclass
class VerdictResult:
    """Aggregate verdict for a single IP address."""

    ip: str
    score: int
    verdict: Verdict
    confidence: float
    signals: Sequence[SignalResult] = field(default_factory=tuple)
    anomalies: Sequence[Anomaly] = field(default_factory=tuple)
    timestamp: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def is_proxy(self) -> bool:
        return self.verdict is Verdict.PROXY_VPN

    def as_dict(self) -> Dict[str, object]:
        return {
            "ip": self.ip,
            "score": self.score,
            "verdict": self.verdict.value,
            "confidence": self.confidence,
            "signals": [signal.as_dict() for signal in self.signals],
            "anomalies": [anomaly.as_dict() for anomaly in self.anomalies],
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> "VerdictResult":
        timestamp_raw = payload.get("timestamp")
        if isinstance(timestamp_raw, datetime):
            timestamp = timestamp_raw
        elif isinstance(timestamp_raw, str):
            timestamp = datetime.fromisoformat(timestamp_raw.replace("Z", "+00:00"))
        else:
            timestamp = datetime.now(tz=timezone.utc)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        return cls(
            ip=str(payload["ip"]),
            score=int(payload.get("score", 0)),
            verdict=Verdict(str(payload.get("verdict", Verdict.ORIGINAL.value))),
            confidence=float(payload.get("confidence", 0.0)),
            signals=tuple(SignalResult.from_dict(item) for item in payload.get("signals") or ()),
            anomalies=tuple(Anomaly.from_dict(item) for item in payload.get("anomalies") or ()),
            timestamp=timestamp,
        )
