import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query

from switchboard.api.dependencies import get_orchestrator, validate_api_key
from switchboard.core.orchestrator import Orchestrator
from switchboard.core.telemetry import DEFAULT_WINDOW_MS

logger = logging.getLogger(__name__)

metrics_router = APIRouter(dependencies=[Depends(validate_api_key)])

WINDOW_QUERY = Query(DEFAULT_WINDOW_MS, gt=0, description="Trailing window in milliseconds")


@metrics_router.get("/endpoint/{name}")
async def endpoint_stats(
    name: str,
    window_ms: float = WINDOW_QUERY,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return {"endpoint": name, **orchestrator.endpoint_stats(name, window_ms).to_dict()}


@metrics_router.get("/provider/{provider}")
async def provider_stats(
    provider: str,
    window_ms: float = WINDOW_QUERY,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    stats = orchestrator.provider_stats(provider, window_ms)
    return {"provider": provider.lower(), **stats.to_dict()}


@metrics_router.get("/user/{user_id}")
async def user_stats(
    user_id: str,
    window_ms: float = WINDOW_QUERY,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    return {"user_id": user_id, **orchestrator.user_stats(user_id, window_ms).to_dict()}


@metrics_router.get("/alerts")
async def recent_alerts(
    limit: int = Query(20, ge=1, le=1000),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    alerts = orchestrator.recent_alerts(limit)
    return {"alerts": [alert.to_dict() for alert in alerts], "count": len(alerts)}


@metrics_router.get("/cache")
async def cache_stats(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    result = {}
    for name, stats in orchestrator.cache_stats().items():
        result[name] = {**asdict(stats), "hit_rate": round(stats.hit_rate, 4)}
    return result


@metrics_router.get("/queue")
async def queue_stats(
    provider: str | None = Query(None, description="Only this provider's queue"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    stats = orchestrator.queue_stats(provider)
    return {p.value: s.to_dict() for p, s in stats.items()}


@metrics_router.get("/quota")
async def quota_stats(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.quota_stats()
