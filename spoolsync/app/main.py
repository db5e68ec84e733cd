import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI

# Import settings first for logging configuration
from spoolsync.app.core.config import settings as app_settings, APP_VERSION

# Configure logging based on settings
# DEBUG=true -> DEBUG level, else use LOG_LEVEL setting
log_level_str = "DEBUG" if app_settings.debug else app_settings.log_level.upper()
log_level = getattr(logging, log_level_str, logging.INFO)
log_format = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Create root logger
root_logger = logging.getLogger()
root_logger.setLevel(log_level)

# Console handler - always enabled
console_handler = logging.StreamHandler()
console_handler.setLevel(log_level)
console_handler.setFormatter(logging.Formatter(log_format))
root_logger.addHandler(console_handler)

# File handler - only in production or if explicitly enabled
if app_settings.log_to_file:
    log_file = app_settings.log_dir / "spoolsync.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)
    logging.info("Logging to file: %s", log_file)

# Reduce noise from third-party libraries in production
if not app_settings.debug:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

logging.info("SpoolSync starting - debug=%s, log_level=%s", app_settings.debug, log_level_str)

from spoolsync.app.api.routes import (  # noqa: E402
    activity,
    events,
    printers,
    settings as settings_routes,
    spools,
    webhook,
)
from spoolsync.app.api.routes.settings import configure_homeassistant, resolve_spoolman_client  # noqa: E402
from spoolsync.app.core.database import async_session, init_db  # noqa: E402
from spoolsync.app.core.events import SpoolEventBroadcaster  # noqa: E402
from spoolsync.app.services.spoolman import close_spoolman_client  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    app.state.broadcaster = SpoolEventBroadcaster()

    async with async_session() as db:
        if await configure_homeassistant(db):
            logger.info("Home Assistant configured")
        else:
            logger.warning("Home Assistant is not configured, printers will not be listed")

        # Auto-connect to Spoolman if a URL is known
        client = await resolve_spoolman_client(db)
        if client:
            if await client.health_check():
                logger.info("Connected to Spoolman at %s", client.base_url)
                await client.ensure_extra_fields()
            else:
                logger.warning("Spoolman at %s is not reachable", client.base_url)

    yield

    # Shutdown
    app.state.broadcaster.close()
    await close_spoolman_client()


app = FastAPI(
    title=app_settings.app_name,
    description="Sync Bambu Lab printer filament usage from Home Assistant into Spoolman",
    version=APP_VERSION,
    lifespan=lifespan,
)

# API routes
app.include_router(printers.router, prefix=app_settings.api_prefix)
app.include_router(spools.router, prefix=app_settings.api_prefix)
app.include_router(webhook.router, prefix=app_settings.api_prefix)
app.include_router(events.router, prefix=app_settings.api_prefix)
app.include_router(activity.router, prefix=app_settings.api_prefix)
app.include_router(settings_routes.router, prefix=app_settings.api_prefix)


@app.get(f"{app_settings.api_prefix}/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": APP_VERSION}
