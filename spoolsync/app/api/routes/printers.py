import logging
from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.api.routes.settings import configure_homeassistant, resolve_spoolman_client
from spoolsync.app.core.database import get_db
from spoolsync.app.services.homeassistant import HomeAssistantError, homeassistant_service
from spoolsync.app.services.printer_aggregator import aggregate, attach_spools, unassigned_trays
from spoolsync.app.services.spoolman import SpoolmanError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/printers", tags=["printers"])


@router.get("/")
async def list_printers(db: AsyncSession = Depends(get_db)):
    """Printers discovered in Home Assistant with their trays and assigned spools."""
    if not homeassistant_service.is_configured and not await configure_homeassistant(db):
        raise HTTPException(status_code=503, detail="Home Assistant is not configured")

    try:
        snapshot = await homeassistant_service.get_sensor_states()
    except HomeAssistantError as e:
        logger.error("Failed to read Home Assistant states: %s", e)
        raise HTTPException(status_code=502, detail=str(e))

    printers = aggregate(snapshot)

    client = await resolve_spoolman_client(db)
    if client:
        try:
            spools = await client.get_spools()
        except SpoolmanError as e:
            logger.error("Failed to read spools: %s", e)
            raise HTTPException(status_code=502, detail=str(e))
        attach_spools(printers, spools)

    return {
        "printers": [asdict(printer) for printer in printers],
        "unassigned_trays": unassigned_trays(printers),
    }
