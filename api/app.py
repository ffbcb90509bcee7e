"""
Account Intelligence API

FastAPI entrypoint. Builds the runtime on startup, kicks off the initial
warmup in the background, and exposes the cache status endpoints.

Run with: uvicorn api.app:app
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI

from account_intel import __version__
from account_intel.service import AccountIntelligence, create_intelligence
from account_intel.utils.config import get_settings
from api.cache import router as cache_router


# Cache settings read os.environ directly, so .env must be loaded first
load_dotenv()
settings = get_settings()

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(
    intel: Optional[AccountIntelligence] = None,
    warmup_on_startup: Optional[bool] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        intel: Prebuilt runtime; created from settings when omitted
        warmup_on_startup: Override WARMUP_ON_STARTUP
    """
    if warmup_on_startup is None:
        warmup_on_startup = settings.WARMUP_ON_STARTUP

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = intel or await create_intelligence(settings)
        app.state.intel = runtime

        warmup_task = None
        if warmup_on_startup:
            logger.info("Starting initial cache warmup in background")
            warmup_task = asyncio.create_task(runtime.orchestrator.run())

        yield

        if warmup_task and not warmup_task.done():
            warmup_task.cancel()
        await runtime.close()

    app = FastAPI(
        title="Account Intelligence",
        description="Cached and incrementally synthesized account insights powered by Claude",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(cache_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "environment": settings.ENVIRONMENT}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
    )
