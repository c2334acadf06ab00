"""FastAPI application factory for the loopback generation API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from discussion_gateway.infrastructure.config import get_settings
from discussion_gateway.interface.dependencies import shutdown, startup
from discussion_gateway.interface.error_handlers import register_error_handlers
from discussion_gateway.interface.routes import router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the shared Ollama client and cancellation broadcaster for the app's lifetime."""
    await startup()
    logger.info("Gateway ready; backend at %s", get_settings().ollama_base_url)
    try:
        yield
    finally:
        # Closing the broadcaster releases any call still waiting on a listener.
        await shutdown()
        logger.info("Gateway stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Discussion Generation Gateway",
        version="1.0.0",
        description=(
            "Local API used by the discussion-assistant desktop app to reach "
            "an Ollama backend with bounded retries and cancellation."
        ),
        lifespan=_lifespan,
    )
    register_error_handlers(app)
    app.include_router(router)

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        """Liveness of this process only; see ``/backend/status`` for Ollama."""
        return {"status": "ok"}

    return app
