"""Reconcile printer events from Home Assistant with Spoolman.

Each webhook delivery is processed on its own: match the event to a spool,
perform at most one Spoolman mutation, and publish the outcome. Spoolman
errors propagate to the caller, which records them; nothing is retried or
rolled back because every event maps to a single atomic Spoolman call.
"""

import logging
import math
from dataclasses import dataclass, field

from pydantic import ValidationError

from spoolsync.app.core.events import SpoolEventBroadcaster
from spoolsync.app.schemas.events import (
    AssignEvent,
    PrintWarningEvent,
    TrayChangeEvent,
    UnassignEvent,
    UsageEvent,
)
from spoolsync.app.schemas.webhook import PrintStartPayload, SpoolUsagePayload, TrayChangePayload
from spoolsync.app.services.spool_matcher import find_spool_by_tag, find_spool_by_tray, is_valid_tag
from spoolsync.app.services.spoolman import (
    ACTIVE_TRAY_KEY,
    SpoolmanClient,
    decode_extra,
    spool_display_name,
    spool_extra,
)

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_NO_MATCH = "no_match"
STATUS_IGNORED = "ignored"
STATUS_WARNING = "warning"


@dataclass
class SyncOutcome:
    """Result of processing one event, plus the activity entry describing it."""

    status: str
    activity_type: str
    message: str
    body: dict = field(default_factory=dict)
    details: dict | None = None

    def response(self) -> dict:
        return {"status": self.status, **self.body}


def ignored(reason: str, details: dict | None = None) -> SyncOutcome:
    return SyncOutcome(
        status=STATUS_IGNORED,
        activity_type="webhook",
        message=f"Ignored webhook: {reason}",
        body={"reason": reason},
        details=details,
    )


class SpoolSyncService:
    """Applies printer events to Spoolman and broadcasts what happened."""

    def __init__(self, client: SpoolmanClient, broadcaster: SpoolEventBroadcaster):
        self.client = client
        self.broadcaster = broadcaster

    async def handle_event(self, payload: dict) -> SyncOutcome:
        event = payload.get("event")
        if event == "spool_usage":
            return await self.handle_spool_usage(payload)
        if event == "tray_change":
            return await self.handle_tray_change(payload)
        if event == "print_start":
            return await self.handle_print_start(payload)
        return ignored("unknown event type", {"event": event})

    async def handle_spool_usage(self, payload: dict) -> SyncOutcome:
        """Deduct filament used by a print from the spool claiming the tray."""
        try:
            data = SpoolUsagePayload.model_validate(payload)
        except ValidationError as e:
            logger.info("Invalid spool_usage payload: %s", e)
            return ignored("invalid spool_usage payload", payload)

        if not data.used_weight or not math.isfinite(data.used_weight) or data.used_weight <= 0:
            return ignored("no weight to deduct", payload)
        if not data.active_tray_id:
            return ignored("no active_tray_id provided", payload)

        used_weight = data.used_weight
        tray_id = data.active_tray_id

        spools = await self.client.get_spools()
        spool = find_spool_by_tray(spools, tray_id)
        if not spool:
            logger.warning("No spool assigned to tray %s", tray_id)
            message = f"No spool assigned to tray {tray_id}. Assign a spool in SpoolSync first."
            return SyncOutcome(
                status=STATUS_NO_MATCH,
                activity_type="webhook",
                message=message,
                body={"message": message},
                details={"trayId": tray_id, "usedWeight": used_weight},
            )

        await self.client.use_spool(spool["id"], used_weight)

        # Projected from the snapshot taken before the deduction; Spoolman is not re-read
        remaining = spool.get("remaining_weight")
        new_weight = remaining - used_weight if remaining is not None else None
        name = spool_display_name(spool)

        self.broadcaster.publish(
            UsageEvent(
                spool_id=spool["id"],
                spool_name=name,
                deducted=used_weight,
                new_weight=new_weight,
                tray_id=tray_id,
            )
        )

        message = f"Deducted {used_weight}g from spool #{spool['id']} ({name})"
        logger.info("%s", message)
        return SyncOutcome(
            status=STATUS_SUCCESS,
            activity_type="spool_usage",
            message=message,
            body={
                "spool_id": spool["id"],
                "deducted": used_weight,
                "new_remaining_weight": new_weight,
            },
            details={"spoolId": spool["id"], "usedWeight": used_weight, "trayId": tray_id},
        )

    async def handle_tray_change(self, payload: dict) -> SyncOutcome:
        """Auto-assign a spool to a tray when its RFID tag matches exactly one spool."""
        try:
            data = TrayChangePayload.model_validate(payload)
        except ValidationError as e:
            logger.info("Invalid tray_change payload: %s", e)
            return ignored("invalid tray_change payload", payload)

        tray_id = data.tray_entity_id
        if not tray_id:
            return ignored("no tray_entity_id provided", payload)

        spool = None
        spools = None
        if is_valid_tag(data.tag_uid):
            spools = await self.client.get_spools()
            spool = find_spool_by_tag(spools, data.tag_uid)

        if spool:
            await self.client.assign_spool_to_tray(spool["id"], tray_id, cached_spools=spools)
            self.broadcaster.publish(
                AssignEvent(
                    spool_id=spool["id"],
                    spool_name=spool_display_name(spool),
                    tray_id=tray_id,
                    matched_by="tag_uid",
                )
            )
            return SyncOutcome(
                status=STATUS_SUCCESS,
                activity_type="spool_change",
                message=f"Auto-assigned spool #{spool['id']} to {tray_id} (matched by tag UID)",
                body={"spool": spool, "matched_by": "tag_uid"},
                details={"spoolId": spool["id"], "trayId": tray_id, "matchedBy": "tag_uid"},
            )

        # No auto-match: the dashboard prompts the user to assign manually
        self.broadcaster.publish(TrayChangeEvent(tray_id=tray_id, tag_uid=data.tag_uid))
        message = "No spool assigned to this tray. Please assign a spool manually in SpoolSync."
        return SyncOutcome(
            status=STATUS_NO_MATCH,
            activity_type="webhook",
            message=f"Tray change on {tray_id} without matching spool",
            body={"message": message},
            details={"trayId": tray_id, "tagUid": data.tag_uid},
        )

    async def handle_print_start(self, payload: dict) -> SyncOutcome:
        """Warn when the spool in the active tray cannot cover the print."""
        try:
            data = PrintStartPayload.model_validate(payload)
        except ValidationError as e:
            logger.info("Invalid print_start payload: %s", e)
            return ignored("invalid print_start payload", payload)

        if not data.required_weight or not math.isfinite(data.required_weight) or data.required_weight <= 0:
            return ignored("no required weight provided", payload)
        if not data.active_tray_id:
            return ignored("no active_tray_id provided", payload)

        tray_id = data.active_tray_id
        spools = await self.client.get_spools()
        spool = find_spool_by_tray(spools, tray_id)
        if not spool:
            message = f"No spool assigned to tray {tray_id}"
            return SyncOutcome(
                status=STATUS_NO_MATCH,
                activity_type="webhook",
                message=message,
                body={"message": message},
                details={"trayId": tray_id},
            )

        remaining = spool.get("remaining_weight")
        name = spool_display_name(spool)
        if remaining is None or data.required_weight <= remaining:
            return SyncOutcome(
                status=STATUS_SUCCESS,
                activity_type="webhook",
                message=f"Spool #{spool['id']} has enough filament for the print on {tray_id}",
                body={"spool_id": spool["id"], "sufficient": True},
                details={"spoolId": spool["id"], "requiredWeight": data.required_weight},
            )

        self.broadcaster.publish(
            PrintWarningEvent(
                tray_id=tray_id,
                spool_id=spool["id"],
                spool_name=name,
                required_weight=data.required_weight,
                remaining_weight=remaining,
            )
        )
        message = (
            f"Print on {tray_id} needs {data.required_weight}g but spool #{spool['id']} ({name}) "
            f"has {remaining}g left"
        )
        logger.warning("%s", message)
        return SyncOutcome(
            status=STATUS_WARNING,
            activity_type="print_warning",
            message=message,
            body={
                "spool_id": spool["id"],
                "sufficient": False,
                "required_weight": data.required_weight,
                "remaining_weight": remaining,
            },
            details={"spoolId": spool["id"], "trayId": tray_id, "requiredWeight": data.required_weight},
        )

    async def assign(self, tray_id: str, spool_id: int) -> dict:
        """Manually assign a spool to a tray."""
        spool = await self.client.assign_spool_to_tray(spool_id, tray_id)
        self.broadcaster.publish(AssignEvent(spool_id=spool_id, spool_name=spool_display_name(spool), tray_id=tray_id))
        return spool

    async def unassign(self, spool_id: int) -> dict:
        """Manually release the tray a spool claims."""
        spool = await self.client.get_spool(spool_id)
        tray_id = decode_extra(spool_extra(spool, ACTIVE_TRAY_KEY))
        updated = await self.client.clear_assignment(spool_id, spool=spool)
        self.broadcaster.publish(
            UnassignEvent(spool_id=spool_id, spool_name=spool_display_name(spool), tray_id=tray_id)
        )
        return updated
