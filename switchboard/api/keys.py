from typing import Any

from fastapi import APIRouter, Depends, Query

from switchboard.api.dependencies import get_orchestrator, validate_api_key
from switchboard.api.models import AddKeyRequest
from switchboard.core.orchestrator import Orchestrator

keys_router = APIRouter(dependencies=[Depends(validate_api_key)])


@keys_router.get("")
async def list_keys(
    provider: str | None = Query(None, description="Only keys for this provider"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    keys = orchestrator.list_keys(provider)
    return {"keys": [key.to_public_dict() for key in keys], "count": len(keys)}


@keys_router.post("", status_code=201)
async def add_key(
    request: AddKeyRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    credential = orchestrator.add_key(request.provider, request.secret, request.label)
    return credential.to_public_dict()


@keys_router.get("/stats")
async def key_stats(
    provider: str | None = Query(None, description="Per-key usage for this provider"),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    if provider is None:
        return orchestrator.aggregated_key_stats()
    stats = orchestrator.key_stats(provider)
    return {
        "provider": provider.lower(),
        "total_keys": stats.total_keys,
        "active_keys": stats.active_keys,
        "total_usage": stats.total_usage,
        "per_key_usage": stats.per_key_usage,
        "total_errors": stats.total_errors,
        "average_health_score": stats.average_health_score,
        "per_key_health": stats.per_key_health,
    }


@keys_router.delete("/{credential_id}")
async def remove_key(
    credential_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    credential = orchestrator.remove_key(credential_id)
    return {"removed": credential.id}


@keys_router.post("/{credential_id}/toggle")
async def toggle_key(
    credential_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    return orchestrator.toggle_key_active(credential_id).to_public_dict()
