"""
Ollama Relay - WebSocket relay for streamed text generation
FastAPI Application Entry Point
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.supervisors import ChangeReload

from ollama_relay.core.config import settings
from ollama_relay.core.logging_config import setup_logging
from ollama_relay.api.v1 import api_router
from ollama_relay.schemas.ws import WsServerShutdown
from ollama_relay.services.connection_registry import ConnectionRegistry
from ollama_relay.services.ollama_client import OllamaClient
from ollama_relay.services.stats_service import run_stats_logger

# Configure logging before anything else
setup_logging()
logger = logging.getLogger(__name__)


async def announce_shutdown(registry: ConnectionRegistry) -> None:
    """Tell every connected client the server is going away, then close with 1001."""
    if not len(registry):
        return
    logger.info("Notifying %d client(s) of shutdown", len(registry))
    await registry.broadcast(WsServerShutdown())
    await registry.close_all(code=1001, reason="Server shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan events.
    Owns the connection registry, the upstream client and the stats task.
    """
    # Startup
    logger.info("%s v%s starting (env=%s debug=%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT, settings.DEBUG)
    registry = ConnectionRegistry()
    ollama_client = OllamaClient()
    app.state.registry = registry
    app.state.ollama_client = ollama_client
    app.state.started_at = time.monotonic()

    stats_task = asyncio.create_task(
        run_stats_logger(registry, app.state.started_at, settings.STATS_INTERVAL_SECONDS)
    )
    logger.info("Relaying to %s (default model %s)", settings.OLLAMA_URL, settings.OLLAMA_MODEL)

    yield

    # Shutdown
    logger.info("%s shutting down...", settings.APP_NAME)
    await announce_shutdown(registry)

    stats_task.cancel()
    with suppress(asyncio.CancelledError):
        await stats_task
    await ollama_client.aclose()


# Initialize FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="WebSocket relay for streamed Ollama generation with presence and broadcast",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint - health check"""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Detailed health check endpoint.
    Returns service status and upstream target.
    """
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "upstream": settings.OLLAMA_URL,
    }


class RelayServer(uvicorn.Server):
    """
    uvicorn server that notifies WebSocket clients before shutting down.

    uvicorn fails open connections with 1012 and waits for their handlers
    before the lifespan shutdown runs.
    """

    async def shutdown(self, sockets=None) -> None:
        registry = getattr(app.state, "registry", None)
        if registry is not None:
            await announce_shutdown(registry)
        await super().shutdown(sockets=sockets)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = uvicorn.Config(
        "ollama_relay.main:app",
        host=settings.UVICORN_HOST,
        port=settings.UVICORN_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
    server = RelayServer(config)
    if config.should_reload:
        sock = config.bind_socket()
        ChangeReload(config, target=server.run, sockets=[sock]).run()
    else:
        server.run()


if __name__ == "__main__":
    run()
