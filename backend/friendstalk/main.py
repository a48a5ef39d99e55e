"""FriendsTalk Relay Application.

This is the main entry point for the FriendsTalk realtime relay.
The relay tracks which users are online, forwards one-to-one messages with
delivery and read receipts, and brokers WebRTC call signaling.

Modules:
    - presence: userId ↔ connection registry, single session per user
    - messages: delivery pipeline, message store, history API
    - calls: call signaling coordinator
    - realtime: /ws endpoint, protocol and connection lifecycle
    - auth: identity token verification

Run with:
    uvicorn friendstalk.main:app --host 0.0.0.0 --port 5000
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from friendstalk import __version__
from friendstalk.config import get_config
from friendstalk.messages.router import router as messages_router
from friendstalk.presence.router import router as presence_router
from friendstalk.realtime.lifecycle import get_lifecycle, set_lifecycle
from friendstalk.realtime.router import router as realtime_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in friendstalk.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    lifecycle = get_lifecycle()
    logger.info(
        "Relay ready on %s:%s (store=%s)",
        config.server.host,
        config.server.port,
        config.store.backend,
    )

    yield  # Application runs here

    # Shutdown
    await lifecycle.close()
    set_lifecycle(None)
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="FriendsTalk Relay",
    description="Realtime presence, messaging and call signaling for FriendsTalk",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register all routers
app.include_router(realtime_router)
app.include_router(messages_router)
app.include_router(presence_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
