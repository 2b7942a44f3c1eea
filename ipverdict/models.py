"""Pydantic models used by the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .jobs import Job
from .signals import VerdictResult
from .store import HistoryPage, HistoryRecord


class DetectRequest(BaseModel):
    ip: str = Field(..., description="IPv4 or IPv6 address to classify")

    @field_validator("ip")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()


class SignalModel(BaseModel):
    name: str
    triggered: bool
    raw_score: float
    weight: float
    confidence: float
    details: str = ""


class AnomalyModel(BaseModel):
    type: str
    severity: str
    details: str


class VerdictModel(BaseModel):
    """Serialized detection result."""

    ip: str
    score: int = Field(..., ge=0, le=100)
    verdict: str
    confidence: float = Field(..., ge=0, le=100)
    signals: List[SignalModel] = Field(default_factory=list)
    anomalies: List[AnomalyModel] = Field(default_factory=list)
    timestamp: datetime

    @classmethod
    def from_result(cls, result: VerdictResult) -> "VerdictModel":
        return cls.model_validate(result.as_dict())


class HistoryEntry(VerdictModel):
    id: str

    @classmethod
    def from_record(cls, record: HistoryRecord) -> "HistoryEntry":
        return cls.model_validate(record.as_dict())


class PaginationModel(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class HistoryEnvelope(BaseModel):
    """API envelope for history listings."""

    records: List[HistoryEntry]
    pagination: PaginationModel

    @classmethod
    def from_page(cls, page: HistoryPage) -> "HistoryEnvelope":
        return cls(
            records=[HistoryEntry.from_record(record) for record in page.records],
            pagination=PaginationModel(page=page.page, limit=page.limit, total=page.total, pages=page.pages),
        )


class HistoryStatsModel(BaseModel):
    total: int
    proxy_vpn: int
    original: int
    proxy_vpn_percentage: float


class BulkRequest(BaseModel):
    ips: List[str] = Field(..., description="Addresses to classify")


class JobModel(BaseModel):
    job_id: str
    status: str
    total: int
    processed: int
    progress: float
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_job(cls, job: Job) -> "JobModel":
        return cls.model_validate(job.as_dict())


class JobResultsEnvelope(BaseModel):
    job_id: str
    status: str
    results: List[Dict[str, Any]] = Field(default_factory=list)


__all__ = [
    "AnomalyModel",
    "BulkRequest",
    "DetectRequest",
    "HistoryEntry",
    "HistoryEnvelope",
    "HistoryStatsModel",
    "JobModel",
    "JobResultsEnvelope",
    "PaginationModel",
    "SignalModel",
    "VerdictModel",
]
