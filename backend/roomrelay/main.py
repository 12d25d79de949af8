"""Room Relay Application.

This is the main entry point for the relay service. Clients join a named room
over a WebSocket and everything they send is relayed to the other
participant(s), with a short in-memory history replayed to newcomers.

Modules:
    - chat: rooms, connections, wire protocol and the WebSocket endpoint
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from roomrelay.chat.registry import RoomRegistry
from roomrelay.chat.router import router as chat_router
from roomrelay.config import AppSettings, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every HTTP request and websockets logs every frame;
# neither is useful when debugging room behaviour.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "websockets.protocol",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager: owns the room registry."""
    # Startup
    config: AppSettings = app.state.config

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in relay.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    app.state.registry = RoomRegistry(config.rooms)
    logger.info(
        f"Relay ready on http://{config.server.host}:{config.server.port} "
        f"(max_participants={config.rooms.max_participants}, "
        f"history_limit={config.rooms.history_limit})"
    )

    yield  # Application runs here

    # Shutdown
    await app.state.registry.shutdown()
    logger.info("Application shutdown complete")


def create_app(config: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to use; defaults to the cached ``get_config()``.

    Returns:
        A configured FastAPI instance. The room registry is created when the
        lifespan starts.
    """
    config = config or get_config()

    app = FastAPI(
        title="Room Relay API",
        description="Real-time two-person room relay over WebSocket",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(chat_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    # Mounted last so that the API routes above take precedence over "/"
    static_dir = Path(config.static.directory)
    if config.static.enabled and static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        logger.info("Serving static files from %s", static_dir)
    elif config.static.enabled:
        logger.info("Static directory %s not found; static files disabled", static_dir)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _config = get_config()
    uvicorn.run(
        "roomrelay.main:app",
        host=_config.server.host,
        port=_config.server.port,
        reload=_config.server.reload,
    )
