"""Spool listing and manual tray assignment."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.api.routes.events import get_broadcaster
from spoolsync.app.api.routes.settings import resolve_spoolman_client
from spoolsync.app.core.database import get_db
from spoolsync.app.core.events import SpoolEventBroadcaster
from spoolsync.app.schemas.webhook import AssignRequest
from spoolsync.app.services.activity_log import write_activity
from spoolsync.app.services.spool_sync import SpoolSyncService
from spoolsync.app.services.spoolman import SpoolmanClient, SpoolmanError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/spools", tags=["spools"])


async def _require_client(db: AsyncSession) -> SpoolmanClient:
    client = await resolve_spoolman_client(db)
    if client is None:
        raise HTTPException(status_code=503, detail="Spoolman is not configured")
    return client


@router.get("/")
async def list_spools(db: AsyncSession = Depends(get_db)):
    """All spools from Spoolman."""
    client = await _require_client(db)
    try:
        spools = await client.get_spools()
    except SpoolmanError as e:
        logger.error("Failed to list spools: %s", e)
        raise HTTPException(status_code=502, detail=str(e))
    return {"spools": spools}


@router.post("/assignments")
async def assign_spool(
    request: AssignRequest,
    db: AsyncSession = Depends(get_db),
    broadcaster: SpoolEventBroadcaster = Depends(get_broadcaster),
):
    """Assign a spool to a tray, releasing any spool that held it before."""
    client = await _require_client(db)
    try:
        spool = await SpoolSyncService(client, broadcaster).assign(request.tray_id, request.spool_id)
    except SpoolmanError as e:
        logger.error("Failed to assign spool %s to %s: %s", request.spool_id, request.tray_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    await write_activity(
        db,
        type="spool_change",
        message=f"Assigned spool #{request.spool_id} to {request.tray_id}",
        details={"spoolId": request.spool_id, "trayId": request.tray_id, "matchedBy": "manual"},
    )
    return {"status": "success", "spool": spool}


@router.delete("/{spool_id}/assignment")
async def unassign_spool(
    spool_id: int,
    db: AsyncSession = Depends(get_db),
    broadcaster: SpoolEventBroadcaster = Depends(get_broadcaster),
):
    """Release the tray a spool currently claims."""
    client = await _require_client(db)
    try:
        spool = await SpoolSyncService(client, broadcaster).unassign(spool_id)
    except SpoolmanError as e:
        logger.error("Failed to unassign spool %s: %s", spool_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    await write_activity(
        db,
        type="spool_change",
        message=f"Unassigned spool #{spool_id}",
        details={"spoolId": spool_id},
    )
    return {"status": "success", "spool": spool}
