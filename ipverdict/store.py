"""Lookup history: an append/query store, encrypted at rest when a key is configured."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from .signals import Verdict, VerdictResult

logger = logging.getLogger(__name__)


def _derive_fernet_key(secret: str) -> bytes:
    """Return a valid Fernet key from an arbitrary secret string."""

    if not secret:
        raise ValueError("HISTORY_KEY must not be empty")

    try:
        decoded = base64.urlsafe_b64decode(secret)
        if len(decoded) == 32:
            return base64.urlsafe_b64encode(decoded)
    except (binascii.Error, ValueError):
        pass

    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


@dataclass
class HistoryRecord:
    id: str
    result: VerdictResult

    def as_dict(self) -> dict[str, object]:
        payload = self.result.as_dict()
        payload["id"] = self.id
        return payload

    @classmethod
    def from_dict(cls, payload: dict) -> "HistoryRecord":
        return cls(id=str(payload["id"]), result=VerdictResult.from_dict(payload))


@dataclass
class HistoryQuery:
    page: int = 1
    limit: int = 20
    verdict: Optional[Verdict] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    search: Optional[str] = None

    def matches(self, record: HistoryRecord) -> bool:
        result = record.result
        if self.verdict is not None and result.verdict is not self.verdict:
            return False
        if self.start is not None and result.timestamp < _aware(self.start):
            return False
        if self.end is not None and result.timestamp > _aware(self.end):
            return False
        if self.search and self.search.lower() not in result.ip.lower():
            return False
        return True


@dataclass
class HistoryPage:
    records: List[HistoryRecord] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class HistoryStats:
    total: int
    proxy_vpn: int
    original: int

    @property
    def proxy_vpn_percentage(self) -> float:
        return round(100.0 * self.proxy_vpn / self.total, 2) if self.total else 0.0

    def as_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "proxy_vpn": self.proxy_vpn,
            "original": self.original,
            "proxy_vpn_percentage": self.proxy_vpn_percentage,
        }


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class HistoryStore:
    """Keep detection results newest-first, bounded by ``max_records``.

    With a ``secret`` and ``storage_path`` the records are written to disk as one
    Fernet token after every change; without them the store lives in memory.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        storage_path: Optional[Path] = None,
        *,
        max_records: int = 10_000,
    ) -> None:
        self._fernet = Fernet(_derive_fernet_key(secret)) if secret else None
        self._storage_path = storage_path if secret else None
        self._max_records = max_records
        self._lock = RLock()
        self._records: List[HistoryRecord] = []
        self._load()

    @classmethod
    def from_settings(cls, settings) -> "HistoryStore":
        secret = getattr(settings, "history_key", None)
        path = Path(settings.data_directory) / "history.enc" if secret else None
        return cls(secret, path, max_records=settings.history_max_records)

    @property
    def persistent(self) -> bool:
        return self._storage_path is not None

    # ------------------------------------------------------------------
    # Persistence helpers
    def _load(self) -> None:
        if self._storage_path is None or not self._storage_path.exists():
            return
        try:
            payload = self._fernet.decrypt(self._storage_path.read_bytes())
        except (InvalidToken, ValueError):
            raise RuntimeError("Unable to decrypt history store. Ensure HISTORY_KEY matches the original value.")
        data = json.loads(payload.decode("utf-8"))
        self._records = [HistoryRecord.from_dict(item) for item in data.get("records", [])]
        logger.info("Loaded %d history record(s) from %s", len(self._records), self._storage_path)

    def _persist(self) -> None:
        if self._storage_path is None:
            return
        data = {"records": [record.as_dict() for record in self._records]}
        encrypted = self._fernet.encrypt(json.dumps(data, separators=(",", ":")).encode("utf-8"))
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        self._storage_path.write_bytes(encrypted)

    # ------------------------------------------------------------------
    # Public API
    def save(self, result: VerdictResult) -> HistoryRecord:
        record = HistoryRecord(id=uuid.uuid4().hex, result=result)
        with self._lock:
            self._records.append(record)
            self._records.sort(key=lambda item: item.result.timestamp, reverse=True)
            del self._records[self._max_records :]
            self._persist()
        return record

    def query(self, query: Optional[HistoryQuery] = None) -> HistoryPage:
        query = query or HistoryQuery()
        page = max(1, query.page)
        limit = max(1, query.limit)
        with self._lock:
            matched = [record for record in self._records if query.matches(record)]
        start = (page - 1) * limit
        return HistoryPage(records=matched[start : start + limit], total=len(matched), page=page, limit=limit)

    def get(self, record_id: str) -> Optional[HistoryRecord]:
        with self._lock:
            for record in self._records:
                if record.id == record_id:
                    return record
        return None

    def delete(self, record_id: str) -> bool:
        with self._lock:
            remaining = [record for record in self._records if record.id != record_id]
            if len(remaining) == len(self._records):
                return False
            self._records = remaining
            self._persist()
        return True

    def stats(self) -> HistoryStats:
        with self._lock:
            verdicts: Dict[Verdict, int] = {Verdict.PROXY_VPN: 0, Verdict.ORIGINAL: 0}
            for record in self._records:
                verdicts[record.result.verdict] += 1
            total = len(self._records)
        return HistoryStats(total=total, proxy_vpn=verdicts[Verdict.PROXY_VPN], original=verdicts[Verdict.ORIGINAL])

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


__all__ = ["HistoryPage", "HistoryQuery", "HistoryRecord", "HistoryStats", "HistoryStore"]
