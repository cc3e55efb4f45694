"""FastAPI application for random one-on-one chat matchmaking."""
from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .core.config import Settings, settings
from .core.logging import configure_logging
from .routers import signaling
from .services.matchmaking import MatchmakingStore
from .services.server import RouletteServer

logger = logging.getLogger(__name__)


def create_app(config: Settings | None = None, store: MatchmakingStore | None = None) -> FastAPI:
    """Build the application with a fresh matchmaking state."""

    config = config or settings
    configure_logging(config.log_level)

    application = FastAPI(title="Roulette Signaling API", version="0.1.0")
    application.state.roulette = RouletteServer.create(config, store=store)
    logger.info("Created signaling app for the %s environment", config.app_env)

    if config.cors_allow_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    application.include_router(signaling.router, prefix="/api/rtc", tags=["signaling"])

    @application.get("/api/health", tags=["meta"])
    async def health() -> dict[str, str]:
        """Simple liveness probe."""

        return {"status": "ok"}

    @application.head("/api/health", tags=["meta"])
    async def health_head() -> Response:
        """Allow HEAD for uptime monitors that only need the status code."""

        return Response(status_code=200)

    return application


app = create_app()


def run() -> None:
    """Console entrypoint: serve on the configured host and port."""

    logger.info("Starting %s signaling server on %s:%s", settings.app_env, settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
