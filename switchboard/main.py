import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from switchboard import __version__
from switchboard.api.endpoints import ai_router
from switchboard.api.endpoints import router as api_router
from switchboard.api.errors import register_exception_handlers
from switchboard.api.keys import keys_router
from switchboard.api.metrics import metrics_router
from switchboard.core.config import Config, get_config
from switchboard.core.logging import configure_root_logging, parse_log_level
from switchboard.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)


def create_app(config: Config | None = None, orchestrator: Orchestrator | None = None) -> FastAPI:
    """Build the FastAPI app; the Orchestrator lives for the app's lifespan."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = orchestrator or Orchestrator.from_config(config)
        app.state.orchestrator = engine
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(title="Switchboard", version=__version__, lifespan=lifespan)
    app.state.config = config

    app.include_router(api_router)
    app.include_router(ai_router, prefix="/ai", tags=["ai"])
    app.include_router(keys_router, prefix="/keys", tags=["keys"])
    app.include_router(metrics_router, prefix="/metrics", tags=["metrics"])
    register_exception_handlers(app)
    return app


def main() -> None:
    if len(sys.argv) > 1 and sys.argv[1] == "--help":
        print(f"Switchboard v{__version__}")
        print("")
        print("Usage: python -m switchboard.main")
        print("       or: swb start")
        print("")
        print("Provider keys (comma-separated for several keys):")
        print("  OPENAI_API_KEY, CLAUDE_API_KEY, GEMINI_API_KEY, OPENROUTER_API_KEY")
        print("")
        print("Optional environment variables:")
        print("  SWITCHBOARD_API_KEY - If set, clients must send this key")
        print("  HOST - Server host (default: 0.0.0.0)")
        print("  PORT - Server port (default: 8090)")
        print("  LOG_LEVEL - Logging level (default: INFO)")
        print("")
        print("For every option, use: swb config docs")
        sys.exit(0)

    config = get_config()
    log_level = configure_root_logging(config.log_level)

    print(f"🚀 Switchboard v{__version__}")
    print("✅ Configuration loaded successfully")
    print(f"   API Key        : {config.api_key_hash}")
    print(f"   Key Store      : {config.key_store_path}")
    print(f"   Fallback Order : {', '.join(p.value for p in config.fallback_order)}")
    print(f"   Request Timeout: {config.request_timeout}s")
    print(f"   Server         : {config.host}:{config.port}")
    print("")

    uvicorn.run(
        "switchboard.main:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        log_level=parse_log_level(log_level).lower(),
        access_log=log_level == "DEBUG",
        reload=False,
    )


if __name__ == "__main__":
    main()
