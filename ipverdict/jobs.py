"""Bulk detection jobs with an explicit lifecycle, store and progress sink."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .engine import DetectionEngine, DetectionTimeoutError, InvalidIPAddressError, normalize_ip

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class InvalidJobTransition(RuntimeError):
    """Raised when a job is moved to a state its lifecycle does not allow."""


class JobNotFoundError(KeyError):
    pass


class BulkRequestError(ValueError):
    """Raised for an empty, oversized or malformed bulk submission."""


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass
class JobItem:
    ip: str
    result: Optional[dict] = None
    error: Optional[str] = None

    def as_dict(self) -> dict[str, object]:
        return {"ip": self.ip, "result": self.result, "error": self.error}


@dataclass
class Job:
    id: str
    ips: List[str]
    status: JobStatus = JobStatus.PENDING
    processed: int = 0
    items: List[JobItem] = field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def total(self) -> int:
        return len(self.ips)

    @property
    def progress(self) -> float:
        return round(100.0 * self.processed / self.total, 2) if self.total else 0.0

    @property
    def finished(self) -> bool:
        return not _TRANSITIONS[self.status]

    def transition(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidJobTransition(f"Job {self.id}: cannot move from {self.status.value} to {status.value}")
        self.status = status
        self.updated_at = _now()

    def as_dict(self) -> dict[str, object]:
        return {
            "job_id": self.id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "progress": self.progress,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class JobStore(Protocol):
    def create(self, job: Job) -> None:
        ...

    def get(self, job_id: str) -> Optional[Job]:
        ...

    def update(self, job: Job) -> None:
        ...

    def delete(self, job_id: str) -> bool:
        ...

    def list(self) -> List[Job]:
        ...


class MemoryJobStore:
    """Job map that forgets finished jobs after a retention window.

    Pending and processing jobs are never evicted, so the bound only applies to
    finished ones.
    """

    def __init__(
        self,
        *,
        max_jobs: int = 1000,
        retention_seconds: float = 3600.0,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._jobs: Dict[str, Job] = {}
        self._max_jobs = max_jobs
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock

    def create(self, job: Job) -> None:
        self._evict()
        self._jobs[job.id] = job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def update(self, job: Job) -> None:
        if job.id not in self._jobs:
            raise JobNotFoundError(job.id)
        job.updated_at = self._clock()
        self._jobs[job.id] = job

    def delete(self, job_id: str) -> bool:
        return self._jobs.pop(job_id, None) is not None

    def list(self) -> List[Job]:
        return sorted(self._jobs.values(), key=lambda job: job.created_at, reverse=True)

    def _evict(self) -> None:
        cutoff = self._clock() - self._retention
        for job_id in [job_id for job_id, job in self._jobs.items() if job.finished and job.updated_at <= cutoff]:
            del self._jobs[job_id]
        finished = sorted((job for job in self._jobs.values() if job.finished), key=lambda job: job.updated_at)
        while finished and len(self._jobs) >= self._max_jobs:
            del self._jobs[finished.pop(0).id]

    def __len__(self) -> int:
        return len(self._jobs)


class ProgressSink(Protocol):
    def report(self, job_id: str, processed: int, total: int) -> None:
        ...


class JobProgressSink:
    """Write progress counters back into the job store."""

    def __init__(self, store: JobStore) -> None:
        self._store = store

    def report(self, job_id: str, processed: int, total: int) -> None:
        job = self._store.get(job_id)
        if job is None:
            return
        job.processed = processed
        self._store.update(job)


class LoggingProgressSink:
    def __init__(self, level: int = logging.INFO) -> None:
        self._level = level

    def report(self, job_id: str, processed: int, total: int) -> None:
        logger.log(self._level, "Bulk job %s: %d/%d processed", job_id, processed, total)


class BulkProcessor:
    """Run batches of detections through a :class:`DetectionEngine`."""

    def __init__(
        self,
        engine: DetectionEngine,
        store: JobStore,
        *,
        sinks: Sequence[ProgressSink] = (),
        max_ips: int = 100,
        concurrency: int = 5,
    ) -> None:
        self.engine = engine
        self.store = store
        self.sinks = tuple(sinks) or (JobProgressSink(store),)
        self.max_ips = max_ips
        self.concurrency = max(1, concurrency)

    def submit(self, ips: Sequence[str]) -> Job:
        if not ips:
            raise BulkRequestError("At least one IP address is required")
        if len(ips) > self.max_ips:
            raise BulkRequestError(f"At most {self.max_ips} IP addresses per bulk request")

        normalized: List[str] = []
        invalid: List[str] = []
        for value in ips:
            try:
                normalized.append(normalize_ip(value))
            except InvalidIPAddressError:
                invalid.append(str(value))
        if invalid:
            raise BulkRequestError("Invalid IP address(es): " + ", ".join(invalid))

        job = Job(id=uuid.uuid4().hex, ips=normalized, items=[JobItem(ip=ip) for ip in normalized])
        self.store.create(job)
        logger.info("Created bulk job %s with %d address(es)", job.id, job.total)
        return job

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def run(self, job_id: str) -> Job:
        job = self.get(job_id)
        job.transition(JobStatus.PROCESSING)
        self.store.update(job)

        semaphore = asyncio.Semaphore(self.concurrency)
        processed = 0

        async def process(item: JobItem) -> None:
            nonlocal processed
            async with semaphore:
                try:
                    result = await self.engine.detect(item.ip)
                    item.result = result.as_dict()
                except (InvalidIPAddressError, DetectionTimeoutError) as exc:
                    item.error = str(exc)
                except Exception as exc:
                    logger.exception("Bulk job %s: detection failed for %s", job.id, item.ip)
                    item.error = exc.__class__.__name__
            processed += 1
            self._report(job.id, processed, job.total)

        try:
            await asyncio.gather(*(process(item) for item in job.items))
        except Exception as exc:
            logger.exception("Bulk job %s failed", job.id)
            job.error = str(exc) or exc.__class__.__name__
            job.transition(JobStatus.FAILED)
            if self.store.get(job.id) is not None:
                self.store.update(job)
            return job

        job.processed = processed
        job.transition(JobStatus.COMPLETED)
        if self.store.get(job.id) is None:
            logger.info("Bulk job %s was deleted while processing", job.id)
            return job
        self.store.update(job)
        logger.info("Bulk job %s completed: %d address(es)", job.id, job.total)
        return job

    def _report(self, job_id: str, processed: int, total: int) -> None:
        for sink in self.sinks:
            try:
                sink.report(job_id, processed, total)
            except Exception:
                logger.warning("Progress sink %r failed for job %s", sink, job_id, exc_info=True)


__all__ = [
    "BulkProcessor",
    "BulkRequestError",
    "InvalidJobTransition",
    "Job",
    "JobItem",
    "JobNotFoundError",
    "JobProgressSink",
    "JobStatus",
    "JobStore",
    "LoggingProgressSink",
    "MemoryJobStore",
    "ProgressSink",
]
