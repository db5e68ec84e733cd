"""Webhook endpoint receiving printer events from Home Assistant automations."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.api.routes.events import get_broadcaster
from spoolsync.app.api.routes.settings import resolve_spoolman_client
from spoolsync.app.core.database import get_db
from spoolsync.app.core.events import SpoolEventBroadcaster
from spoolsync.app.services.activity_log import write_activity
from spoolsync.app.services.spool_sync import SpoolSyncService, ignored

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])

WEBHOOK_DOCS = {
    "description": "SpoolSync webhook for Home Assistant automations",
    "events": {
        "spool_usage": {
            "description": "Deduct filament used by a finished print",
            "payload": {"event": "spool_usage", "used_weight": "number (grams)", "active_tray_id": "string"},
        },
        "tray_change": {
            "description": "A tray was loaded; auto-assigns a spool by RFID tag UID",
            "payload": {"event": "tray_change", "tray_entity_id": "string", "tag_uid": "string"},
        },
        "print_start": {
            "description": "Warn when the active spool cannot cover the print",
            "payload": {"event": "print_start", "active_tray_id": "string", "required_weight": "number (grams)"},
        },
    },
}


@router.get("/")
async def webhook_info():
    """Describe the accepted webhook payloads."""
    return WEBHOOK_DOCS


@router.post("/")
async def receive_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    broadcaster: SpoolEventBroadcaster = Depends(get_broadcaster),
):
    """Process one printer event. Exactly one activity entry is written per call."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        payload = None

    if not isinstance(payload, dict):
        outcome = ignored("invalid payload")
        await write_activity(db, type=outcome.activity_type, message=outcome.message)
        return outcome.response()

    logger.debug("Webhook received: %s", payload)

    try:
        client = await resolve_spoolman_client(db)
        if client is None:
            outcome = ignored("spoolman not configured", payload)
        else:
            outcome = await SpoolSyncService(client, broadcaster).handle_event(payload)
    except Exception as e:
        logger.error("Webhook processing failed for %s: %s", payload.get("event"), e, exc_info=True)
        await write_activity(
            db,
            type="error",
            message=f"Webhook processing failed: {e}",
            details={"event": payload.get("event"), "error": str(e)},
        )
        return JSONResponse(status_code=500, content={"status": "error", "error": "Webhook processing failed"})

    await write_activity(db, type=outcome.activity_type, message=outcome.message, details=outcome.details)
    return outcome.response()
