import logging
import os

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.core.config import settings as app_settings
from spoolsync.app.core.database import get_db
from spoolsync.app.models.settings import Settings
from spoolsync.app.schemas.settings import ConnectionSettings, ConnectionSettingsUpdate, ConnectionStatus
from spoolsync.app.services.homeassistant import homeassistant_service
from spoolsync.app.services.spoolman import SpoolmanClient, get_spoolman_client, init_spoolman_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])

# setting key -> (environment variable, config attribute)
CONNECTION_KEYS = {
    "spoolman_url": ("SPOOLMAN_URL", "spoolman_url"),
    "ha_url": ("HA_URL", "ha_url"),
    "ha_token": ("HA_TOKEN", "ha_token"),
}


async def get_setting(db: AsyncSession, key: str) -> str | None:
    """Get a single setting value by key."""
    result = await db.execute(select(Settings).where(Settings.key == key))
    setting = result.scalar_one_or_none()
    return setting.value if setting else None


async def set_setting(db: AsyncSession, key: str, value: str) -> None:
    """Set a single setting value."""
    result = await db.execute(select(Settings).where(Settings.key == key))
    setting = result.scalar_one_or_none()

    if setting:
        setting.value = value
    else:
        setting = Settings(key=key, value=value)
        db.add(setting)


def _env_value(key: str) -> str:
    env_var, attr = CONNECTION_KEYS[key]
    return os.environ.get(env_var) or getattr(app_settings, attr) or ""


async def get_connection_settings(db: AsyncSession) -> dict:
    """Resolve connection settings; environment values win over the database."""
    result = {}
    for key in CONNECTION_KEYS:
        env_value = _env_value(key)
        if env_value:
            result[key] = env_value
            result[f"{key}_from_env"] = True
        else:
            result[key] = await get_setting(db, key) or ""
            result[f"{key}_from_env"] = False
    return result


async def resolve_spoolman_client(db: AsyncSession) -> SpoolmanClient | None:
    """Return the Spoolman client for the configured URL, creating it if needed."""
    url = (await get_connection_settings(db))["spoolman_url"]
    if not url:
        return None

    client = await get_spoolman_client()
    if client is None or client.base_url != url.rstrip("/"):
        client = await init_spoolman_client(url, timeout=app_settings.http_timeout)
    return client


async def configure_homeassistant(db: AsyncSession) -> bool:
    """Point the Home Assistant service at the configured instance."""
    conn = await get_connection_settings(db)
    homeassistant_service.configure(conn["ha_url"], conn["ha_token"], timeout=app_settings.http_timeout)
    return homeassistant_service.is_configured


def _to_schema(conn: dict) -> ConnectionSettings:
    return ConnectionSettings(
        spoolman_url=conn["spoolman_url"],
        ha_url=conn["ha_url"],
        ha_token_set=bool(conn["ha_token"]),
        spoolman_url_from_env=conn["spoolman_url_from_env"],
        ha_url_from_env=conn["ha_url_from_env"],
        ha_token_from_env=conn["ha_token_from_env"],
    )


@router.get("/", response_model=ConnectionSettings)
async def get_settings(db: AsyncSession = Depends(get_db)):
    """Get connection settings. The HA token itself is never returned."""
    return _to_schema(await get_connection_settings(db))


@router.put("/", response_model=ConnectionSettings)
async def update_settings(
    settings_update: ConnectionSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update connection settings and reconnect the clients."""
    update_data = settings_update.model_dump(exclude_unset=True)

    for key, value in update_data.items():
        if value is None:
            continue
        if _env_value(key):
            logger.info("Setting %s is managed by the environment, stored value will be shadowed", key)
        await set_setting(db, key, value.strip())

    await db.flush()
    conn = await get_connection_settings(db)

    if "spoolman_url" in update_data and conn["spoolman_url"]:
        client = await init_spoolman_client(conn["spoolman_url"], timeout=app_settings.http_timeout)
        if await client.health_check():
            await client.ensure_extra_fields()
    homeassistant_service.configure(conn["ha_url"], conn["ha_token"], timeout=app_settings.http_timeout)

    return _to_schema(conn)


@router.get("/status", response_model=ConnectionStatus)
async def get_connection_status(db: AsyncSession = Depends(get_db)):
    """Check both upstream services."""
    conn = await get_connection_settings(db)
    status = ConnectionStatus()

    if conn["ha_url"] and conn["ha_token"]:
        ha = await homeassistant_service.test_connection(conn["ha_url"], conn["ha_token"])
        status.homeassistant = {"url": conn["ha_url"], "connected": ha["success"], "error": ha["error"]}

    client = await resolve_spoolman_client(db)
    if client:
        status.spoolman = {"url": client.base_url, "connected": await client.health_check()}

    return status
