import time
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter


def _now_ms() -> int:
    return int(time.time() * 1000)


class SyncEventBase(BaseModel):
    timestamp: int = Field(default_factory=_now_ms)


class UsageEvent(SyncEventBase):
    type: Literal["usage"] = "usage"
    spool_id: int
    spool_name: str | None = None
    deducted: float
    new_weight: float | None = None  # projected from the pre-deduction snapshot
    tray_id: str


class AssignEvent(SyncEventBase):
    type: Literal["assign"] = "assign"
    spool_id: int
    spool_name: str | None = None
    tray_id: str
    matched_by: str | None = None  # "tag_uid" for automatic matches, None for manual


class UnassignEvent(SyncEventBase):
    type: Literal["unassign"] = "unassign"
    spool_id: int
    spool_name: str | None = None
    tray_id: str | None = None


class TrayChangeEvent(SyncEventBase):
    type: Literal["tray_change"] = "tray_change"
    tray_id: str
    tag_uid: str | None = None


class PrintWarningEvent(SyncEventBase):
    type: Literal["print_warning"] = "print_warning"
    tray_id: str
    spool_id: int
    spool_name: str | None = None
    required_weight: float
    remaining_weight: float


SyncEvent = Annotated[
    UsageEvent | AssignEvent | UnassignEvent | TrayChangeEvent | PrintWarningEvent,
    Field(discriminator="type"),
]

sync_event_adapter = TypeAdapter(SyncEvent)
