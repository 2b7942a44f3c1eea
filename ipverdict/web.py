"""FastAPI application exposing detection, bulk jobs and lookup history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request

from .cache import MemoryCache
from .config import Settings, get_settings
from .engine import DetectionEngine, DetectionTimeoutError, InvalidIPAddressError
from .jobs import (
    BulkProcessor,
    BulkRequestError,
    JobNotFoundError,
    JobProgressSink,
    LoggingProgressSink,
    MemoryJobStore,
)
from .models import (
    BulkRequest,
    DetectRequest,
    HistoryEntry,
    HistoryEnvelope,
    HistoryStatsModel,
    JobModel,
    JobResultsEnvelope,
    VerdictModel,
)
from .signals import Verdict
from .store import HistoryQuery, HistoryStore

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[DetectionEngine] = None,
    history: Optional[HistoryStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    history = history if history is not None else HistoryStore.from_settings(settings)
    if engine is None:
        engine = DetectionEngine.from_settings(settings, cache=MemoryCache(), history=history)
    job_store = MemoryJobStore(
        max_jobs=settings.bulk_max_jobs, retention_seconds=settings.bulk_retention_seconds
    )
    processor = BulkProcessor(
        engine,
        job_store,
        sinks=(JobProgressSink(job_store), LoggingProgressSink(logging.DEBUG)),
        max_ips=settings.bulk_max_ips,
        concurrency=settings.bulk_concurrency,
    )

    app = FastAPI(title="ipverdict", version="0.1.0")
    app.state.settings = settings
    app.state.engine = engine
    app.state.history = history
    app.state.processor = processor

    @app.on_event("shutdown")
    def _shutdown() -> None:
        for provider in engine.providers:
            provider.close()

    _register_routes(app)
    return app


def get_engine(request: Request) -> DetectionEngine:
    return request.app.state.engine


def get_history(request: Request) -> HistoryStore:
    return request.app.state.history


def get_processor(request: Request) -> BulkProcessor:
    return request.app.state.processor


def _parse_verdict(value: Optional[str]) -> Optional[Verdict]:
    if not value:
        return None
    normalized = value.strip().upper().replace("/", "_")
    try:
        return Verdict(normalized)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown verdict {value!r}") from None


def _register_routes(app: FastAPI) -> None:
    @app.get("/healthz")
    async def healthz(engine: DetectionEngine = Depends(get_engine)) -> dict:
        return {"status": "ok", "providers": [provider.name for provider in engine.providers]}

    @app.post("/api/detect", response_model=VerdictModel)
    async def detect(payload: DetectRequest, engine: DetectionEngine = Depends(get_engine)) -> VerdictModel:
        try:
            result = await engine.detect(payload.ip)
        except InvalidIPAddressError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except DetectionTimeoutError as exc:
            raise HTTPException(status_code=504, detail=str(exc)) from exc
        return VerdictModel.from_result(result)

    # ------------------------------------------------------------------
    # Bulk jobs
    @app.post("/api/bulk", response_model=JobModel, status_code=202)
    async def submit_bulk(
        payload: BulkRequest,
        background_tasks: BackgroundTasks,
        processor: BulkProcessor = Depends(get_processor),
    ) -> JobModel:
        try:
            job = processor.submit(payload.ips)
        except BulkRequestError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        background_tasks.add_task(processor.run, job.id)
        return JobModel.from_job(job)

    @app.get("/api/bulk/{job_id}", response_model=JobModel)
    async def bulk_status(job_id: str, processor: BulkProcessor = Depends(get_processor)) -> JobModel:
        try:
            return JobModel.from_job(processor.get(job_id))
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Job not found") from None

    @app.get("/api/bulk/{job_id}/results", response_model=JobResultsEnvelope)
    async def bulk_results(job_id: str, processor: BulkProcessor = Depends(get_processor)) -> JobResultsEnvelope:
        try:
            job = processor.get(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Job not found") from None
        return JobResultsEnvelope(
            job_id=job.id,
            status=job.status.value,
            results=[item.as_dict() for item in job.items if item.result is not None or item.error is not None],
        )

    @app.delete("/api/bulk/{job_id}")
    async def delete_bulk(job_id: str, processor: BulkProcessor = Depends(get_processor)) -> dict:
        if not processor.store.delete(job_id):
            raise HTTPException(status_code=404, detail="Job not found")
        return {"deleted": job_id}

    # ------------------------------------------------------------------
    # History
    @app.get("/api/history", response_model=HistoryEnvelope)
    async def history(
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        verdict: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        search: Optional[str] = None,
        store: HistoryStore = Depends(get_history),
    ) -> HistoryEnvelope:
        query = HistoryQuery(
            page=page,
            limit=limit,
            verdict=_parse_verdict(verdict),
            start=start_date,
            end=end_date,
            search=search,
        )
        return HistoryEnvelope.from_page(store.query(query))

    @app.get("/api/history/stats", response_model=HistoryStatsModel)
    async def history_stats(store: HistoryStore = Depends(get_history)) -> HistoryStatsModel:
        return HistoryStatsModel(**store.stats().as_dict())

    @app.get("/api/history/{record_id}", response_model=HistoryEntry)
    async def history_entry(record_id: str, store: HistoryStore = Depends(get_history)) -> HistoryEntry:
        record = store.get(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Lookup not found")
        return HistoryEntry.from_record(record)

    @app.delete("/api/history/{record_id}")
    async def delete_history_entry(record_id: str, store: HistoryStore = Depends(get_history)) -> dict:
        if not store.delete(record_id):
            raise HTTPException(status_code=404, detail="Lookup not found")
        return {"deleted": record_id}


app = create_app()


__all__ = ["app", "configure_logging", "create_app"]
