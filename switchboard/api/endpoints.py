import logging
from typing import Any

from fastapi import APIRouter, Body, Depends

from switchboard.api.dependencies import get_orchestrator, validate_api_key
from switchboard.api.models import CompleteRequest, EmbeddingRequest, TestConnectionRequest
from switchboard.core.orchestrator import Orchestrator
from switchboard.core.providers import Provider

logger = logging.getLogger(__name__)

router = APIRouter()
ai_router = APIRouter(dependencies=[Depends(validate_api_key)])


@router.post("/v1/complete", dependencies=[Depends(validate_api_key)])
async def complete(
    request: CompleteRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    result = await orchestrator.complete(request.to_spec())
    return {
        "kind": result.kind,
        "text": result.text,
        "provider": result.provider.value,
        "model": result.model,
        "usage": {
            "tokens_in": result.tokens_in,
            "tokens_out": result.tokens_out,
            "total_tokens": result.total_tokens,
        },
        "cached": result.cached,
        "attempts": result.attempts,
    }


@router.post("/v1/embeddings", dependencies=[Depends(validate_api_key)])
async def embeddings(
    request: EmbeddingRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    result = await orchestrator.embed(request.to_spec())
    return {
        "kind": result.kind,
        "embedding": list(result.vector),
        "provider": result.provider.value,
        "model": result.model,
        "usage": {"tokens_in": result.tokens_in},
        "cached": result.cached,
        "attempts": result.attempts,
    }


@router.get("/health")
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    active = orchestrator.get_active_provider()
    key_stats = orchestrator.aggregated_key_stats()
    return {
        "status": "healthy" if active is not None else "degraded",
        "active_provider": active.value if active else None,
        "active_keys": key_stats["active_keys"],
    }


@ai_router.get("/config")
async def get_config(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.configuration()


@ai_router.post("/set-active/{provider}")
async def set_active_provider(
    provider: str, orchestrator: Orchestrator = Depends(get_orchestrator)
) -> dict[str, Any]:
    selected = orchestrator.set_active_provider(provider)
    return {"success": True, "active_provider": selected.value}


@ai_router.post("/auto-configure")
async def auto_configure(orchestrator: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    return orchestrator.auto_configure().to_dict()


@ai_router.post("/test-connection/{provider}")
async def test_connection(
    provider: str,
    request: TestConnectionRequest | None = Body(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    parsed = Provider.parse(provider)
    ok = await orchestrator.test_connection(parsed, request.api_key if request else None)
    return {"provider": parsed.value, "success": ok}
