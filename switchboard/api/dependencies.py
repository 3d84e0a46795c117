import logging

from fastapi import Header, HTTPException, Request

from switchboard.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


async def validate_api_key(
    request: Request,
    x_api_key: str | None = Header(None),
    authorization: str | None = Header(None),
) -> None:
    """Validate the client's API key from either x-api-key header or Authorization header."""
    config = request.app.state.config

    # Skip validation if SWITCHBOARD_API_KEY is not set
    if not config.api_key:
        return

    client_api_key = None
    if x_api_key:
        client_api_key = x_api_key
    elif authorization and authorization.startswith("Bearer "):
        client_api_key = authorization.replace("Bearer ", "")

    if not client_api_key or not config.validate_client_api_key(client_api_key):
        logger.warning("Invalid API key provided by client")
        raise HTTPException(status_code=401, detail="Invalid API key")
