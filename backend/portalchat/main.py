"""PortalChat Backend Application.

This is the main entry point for the PortalChat backend service, the
direct-messaging component of the portal. Admins, coordinators, students
and alumni exchange one-to-one messages over a WebSocket; history and the
contact picker are served over HTTP.

Modules:
    - messaging: WebSocket gateway, rooms, send path and history
    - directory: DuckDB-backed view of portal accounts
    - auth: JWT bearer token verification
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portalchat.auth.service import TokenService, set_token_service
from portalchat.config import get_config
from portalchat.directory import UserDirectoryService
from portalchat.messaging.broadcaster import broadcaster
from portalchat.messaging.router import router as messaging_router
from portalchat.messaging.store import MessageStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# uvicorn.access logs every history poll; websockets logs every frame at DEBUG.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in portalchat.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    MessageStore.get_instance(config.storage.messages_db)
    directory = UserDirectoryService.get_instance(config.storage.users_db)

    if config.directory.seed_file:
        directory.load_seed_file(config.directory.seed_file)

    set_token_service(TokenService.from_config(config))
    if config.secrets.jwt.secret_key == "change-me-in-production":
        logger.warning("JWT secret is the built-in default; set it in portalchat.secrets.yaml")

    logger.info(
        f"Server running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    broadcaster.reset()
    MessageStore.reset_instance()
    UserDirectoryService.reset_instance()
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="PortalChat API",
    description="Real-time direct messaging between portal users",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_config().server.allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(messaging_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
