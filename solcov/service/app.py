"""FastAPI application for cumulative coverage aggregation."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..aggregator import CoverageAggregator
from ..collector import EventCollector
from ..errors import AggregationError, CoverageError
from ..logging import get_logger
from ..manifest import BuildManifest
from ..stores import CoverageStore


class RunRequest(BaseModel):
    run_id: Optional[str] = None
    counts: Optional[Dict[str, Dict[str, int]]] = None
    records: Optional[List[Dict[str, Any]]] = None


class RunResponse(BaseModel):
    status: str
    runs: int
    ignored: int = 0


class HealthResponse(BaseModel):
    status: str
    units: int
    runs: int


class SummaryResponse(BaseModel):
    total: Dict[str, Dict[str, Any]]
    units: Dict[str, Dict[str, Dict[str, Any]]]


def create_app(
    manifest_factory: Callable[[], BuildManifest],
    *,
    store_path: Path | None = None,
) -> FastAPI:
    """Create the aggregation service for one build manifest."""

    manifest = manifest_factory()
    aggregator: CoverageAggregator = manifest.aggregator()
    store = CoverageStore(store_path) if store_path is not None else None
    if store is not None:
        store.load_into(aggregator)
    logger = get_logger("service")

    app = FastAPI(title="solcov aggregation service", version="1.0.0")
    app.state.manifest = manifest
    app.state.aggregator = aggregator

    async def _in_executor(func: Callable[[], Any]) -> Any:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:  # pragma: no cover - fallback path when not in async context
            return func()
        return await loop.run_in_executor(None, func)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", units=len(aggregator.units), runs=aggregator.runs)

    @app.post("/runs", response_model=RunResponse)
    async def submit_run(payload: RunRequest) -> RunResponse:
        if payload.counts is None and payload.records is None:
            raise HTTPException(status_code=400, detail="counts or records required")

        def _merge() -> int:
            ignored = 0
            if payload.counts is not None:
                aggregator.merge_counts(payload.counts)
            if payload.records is not None:
                collector = EventCollector(manifest.table, run_id=payload.run_id or "service")
                aggregator.merge(collector.consume(payload.records).results())
                ignored = collector.ignored
            if store is not None:
                store.update(aggregator)
                store.persist()
            return ignored

        ignored = await _in_executor(_merge)
        logger.info("Merged run %s", payload.run_id or "<anonymous>")
        return RunResponse(status="ok", runs=aggregator.runs, ignored=ignored)

    @app.get("/coverage")
    async def coverage() -> Dict[str, Any]:
        return aggregator.export()

    @app.get("/summary", response_model=SummaryResponse)
    async def summary() -> SummaryResponse:
        return SummaryResponse(
            total=aggregator.summary(),
            units={unit: aggregator.summary(unit) for unit in aggregator.units},
        )

    @app.exception_handler(AggregationError)
    async def aggregation_error_handler(_: Any, exc: AggregationError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "unit": exc.unit})

    @app.exception_handler(CoverageError)
    async def coverage_error_handler(
        _: Any, exc: CoverageError
    ) -> JSONResponse:  # pragma: no cover - simple mapping
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    return app


def run_service(
    manifest_path: Path,
    host: str = "0.0.0.0",
    port: int = 8000,
    *,
    store_path: Path | None = None,
) -> None:  # pragma: no cover - integration path
    import uvicorn

    app = create_app(lambda: BuildManifest.load(manifest_path), store_path=store_path)
    uvicorn.run(app, host=host, port=port)


__all__ = ["create_app", "run_service"]
