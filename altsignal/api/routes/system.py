"""System endpoints: health, collectors, fused signals, driver status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from altsignal import __version__
from altsignal.api.app import get_pipeline, get_uptime
from altsignal.pipeline import Pipeline
from altsignal.utils import time_ago

router = APIRouter(tags=["system"])


@router.get("/health")
async def health(pipeline: Pipeline = Depends(get_pipeline)):
    engine = pipeline.engine.get_stats()
    return {
        "status": "degraded" if engine["degraded"] else "ok",
        "version": __version__,
        "uptime_seconds": round(get_uptime(), 1),
        "mock_mode": pipeline.mock,
        "components": {
            "store": not engine["degraded"],
            "collectors": len(pipeline.registry.names),
            "driver": pipeline.driver.running,
        },
        "engine": engine,
        "events": pipeline.bus.get_stats(),
    }


@router.get("/collectors")
async def collectors(check: bool = Query(False), pipeline: Pipeline = Depends(get_pipeline)):
    status = pipeline.registry.get_status()
    for entry in status["collectors"]:
        last = entry.get("last_update")
        entry["last_update_ago"] = time_ago(last) if last else None
        if last:
            entry["last_update"] = last.isoformat()
        if entry.get("next_update"):
            entry["next_update"] = entry["next_update"].isoformat()
    if check:
        status["health"] = await pipeline.registry.health_check()
    return status


@router.get("/collectors/{name}/metrics")
async def collector_metrics(name: str, pipeline: Pipeline = Depends(get_pipeline)):
    collector = pipeline.registry.get(name)
    if collector is None:
        raise HTTPException(404, "Collector not found")
    metrics = collector.get_metrics()
    if metrics.get("last_update"):
        metrics["last_update"] = metrics["last_update"].isoformat()
    return metrics


@router.get("/signals/{symbol}")
async def signal(symbol: str, refresh: bool = Query(False), pipeline: Pipeline = Depends(get_pipeline)):
    """Latest fused signal for *symbol*; ``refresh`` runs a collection cycle first."""
    symbol = symbol.upper()
    if refresh:
        result = await pipeline.registry.collect_all(symbol)
    else:
        result = pipeline.registry.latest_signal(symbol) or pipeline.registry.fuse_latest(symbol)
    return result.to_dict()


@router.get("/driver")
async def driver_status(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.driver.get_status()
