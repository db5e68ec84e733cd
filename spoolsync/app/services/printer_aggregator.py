"""Group Home Assistant sensor entities into printers, AMS units and trays.

The aggregator is locale independent: every entity goes through the pattern
registry, and entities it cannot classify are dropped since Home Assistant
exposes plenty of unrelated sensors.
"""

import logging
from dataclasses import dataclass, field

from spoolsync.app.core.entity_patterns import (
    EntityKind,
    EntityMatch,
    Locale,
    NoMatchError,
    classify,
    clean_friendly_name,
    detect_locale,
)
from spoolsync.app.services.spool_matcher import spools_by_tray

logger = logging.getLogger(__name__)

EMPTY_TRAY_NAMES = {"", "empty"}
UNAVAILABLE_STATES = {"unknown", "unavailable"}
EXTERNAL_TRAY_NUMBER = 1


@dataclass
class TraySlot:
    """One feed position: an AMS tray or the printer's external spool holder."""

    entity_id: str
    tray_number: int
    ams_index: int | None = None
    filament_name: str | None = None
    material: str | None = None
    color: str | None = None
    tag_uid: str | None = None
    remaining_percent: float | None = None
    active: bool = False
    assigned_spool: dict | None = None
    mismatch: dict | None = None

    @property
    def is_external(self) -> bool:
        return self.ams_index is None

    @property
    def has_filament(self) -> bool:
        return (self.filament_name or "").strip().lower() not in EMPTY_TRAY_NAMES


@dataclass
class AMSUnit:
    index: int
    name: str
    entity_id: str | None = None  # humidity sensor, when present
    humidity: float | None = None
    trays: list[TraySlot] = field(default_factory=list)


@dataclass
class Printer:
    key: str
    prefix: str
    name: str
    state: str
    locale: Locale
    entity_id: str | None = None  # print status sensor, when present
    ams_units: list[AMSUnit] = field(default_factory=list)
    external_spool: TraySlot | None = None
    stage: str | None = None
    print_weight: float | None = None
    print_progress: float | None = None
    entity_ids: dict[str, str] = field(default_factory=dict)

    def trays(self) -> list[TraySlot]:
        slots = [tray for ams in self.ams_units for tray in ams.trays]
        if self.external_spool:
            slots.append(self.external_spool)
        return slots


def _state(entity: dict) -> str | None:
    state = entity.get("state")
    if state is None or str(state).lower() in UNAVAILABLE_STATES:
        return None
    return str(state)


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _build_tray(entity: dict, match: EntityMatch) -> TraySlot:
    attrs = entity.get("attributes") or {}
    tag_uid = attrs.get("tag_uid")
    return TraySlot(
        entity_id=match.entity_id,
        tray_number=match.tray_number if match.tray_number is not None else EXTERNAL_TRAY_NUMBER,
        ams_index=match.ams_index,
        filament_name=attrs.get("name") or _state(entity),
        material=attrs.get("type") or None,
        color=attrs.get("color") or None,
        tag_uid=str(tag_uid) if tag_uid else None,
        remaining_percent=_to_float(attrs.get("remain")),
        active=bool(attrs.get("active", False)),
    )


def _build_printer(key: str, entities: list[tuple[EntityMatch, dict]]) -> Printer:
    status = next(((m, e) for m, e in entities if m.kind == EntityKind.PRINT_STATUS), None)
    first_match = entities[0][0]

    if status:
        status_match, status_entity = status
        attrs = status_entity.get("attributes") or {}
        printer = Printer(
            key=key,
            prefix=status_match.prefix,
            name=clean_friendly_name(attrs.get("friendly_name"), key),
            state=_state(status_entity) or "unknown",
            locale=detect_locale(status_match.entity_id),
            entity_id=status_match.entity_id,
        )
    else:
        printer = Printer(
            key=key,
            prefix=first_match.prefix,
            name=key,
            state="unknown",
            locale=first_match.locale,
        )

    units: dict[int, AMSUnit] = {}

    def unit(index: int) -> AMSUnit:
        if index not in units:
            units[index] = AMSUnit(index=index, name=f"AMS {index}")
        return units[index]

    seen_trays: set[tuple[int | None, int]] = set()
    for match, entity in entities:
        printer.entity_ids.setdefault(match.kind.value, match.entity_id)

        if match.kind == EntityKind.AMS_HUMIDITY:
            ams = unit(match.ams_index)
            if ams.entity_id is None:
                ams.entity_id = match.entity_id
                ams.humidity = _to_float(_state(entity))

        elif match.kind in (EntityKind.TRAY, EntityKind.EXTERNAL_SPOOL):
            tray = _build_tray(entity, match)
            slot_key = (tray.ams_index, tray.tray_number)
            if slot_key in seen_trays:
                logger.debug("Duplicate tray entity %s for printer %s, ignoring", match.entity_id, key)
                continue
            seen_trays.add(slot_key)
            if tray.is_external:
                printer.external_spool = tray
            else:
                unit(match.ams_index).trays.append(tray)

        elif match.kind == EntityKind.CURRENT_STAGE:
            printer.stage = _state(entity)
        elif match.kind == EntityKind.PRINT_WEIGHT:
            printer.print_weight = _to_float(_state(entity))
        elif match.kind == EntityKind.PRINT_PROGRESS:
            printer.print_progress = _to_float(_state(entity))

    for ams in units.values():
        ams.trays.sort(key=lambda t: t.tray_number)
    printer.ams_units = [units[i] for i in sorted(units)]
    return printer


def aggregate(snapshot: list[dict]) -> list[Printer]:
    """Build the printer -> AMS -> tray tree from a Home Assistant snapshot.

    The result does not depend on snapshot ordering.
    """
    groups: dict[str, list[tuple[EntityMatch, dict]]] = {}
    dropped = 0

    for entity in sorted(snapshot, key=lambda e: e.get("entity_id") or ""):
        entity_id = entity.get("entity_id") or ""
        try:
            match = classify(entity_id)
        except NoMatchError:
            dropped += 1
            continue
        groups.setdefault(match.printer_key, []).append((match, entity))

    if dropped:
        logger.debug("Ignored %d unrelated entities", dropped)

    printers = [_build_printer(key, entities) for key, entities in groups.items()]
    printers.sort(key=lambda p: (p.name.lower(), p.key))
    return printers


def _color_hex(value: str | None) -> str | None:
    if not value:
        return None
    hex_value = value.lstrip("#").upper()
    return hex_value[:6] if len(hex_value) >= 6 else None


def detect_mismatch(tray: TraySlot, spool: dict) -> dict | None:
    """Compare what the printer reports for a tray with the assigned spool."""
    if not tray.has_filament:
        return None

    filament = spool.get("filament") or {}
    spool_material = filament.get("material") or ""
    spool_color = _color_hex(filament.get("color_hex"))
    tray_color = _color_hex(tray.color)

    material_differs = bool(tray.material and spool_material and tray.material.upper() != spool_material.upper())
    color_differs = bool(tray_color and spool_color and tray_color != spool_color)
    if not material_differs and not color_differs:
        return None

    if material_differs and color_differs:
        kind, message = "both", "Printer reports a different material and color than the assigned spool"
    elif material_differs:
        kind, message = "material", f"Printer reports {tray.material}, assigned spool is {spool_material}"
    else:
        kind, message = "color", "Printer reports a different color than the assigned spool"

    return {
        "type": kind,
        "printer_reports": {"material": tray.material, "color": tray.color},
        "spoolman_has": {"material": spool_material, "color": filament.get("color_hex") or ""},
        "message": message,
    }


def attach_spools(printers: list[Printer], spools: list[dict]) -> list[Printer]:
    """Annotate each tray with the spool claiming it and any mismatch."""
    claims = spools_by_tray(spools)
    for printer in printers:
        for tray in printer.trays():
            spool = claims.get(tray.entity_id)
            tray.assigned_spool = spool
            tray.mismatch = detect_mismatch(tray, spool) if spool else None
    return printers


def unassigned_trays(printers: list[Printer]) -> list[str]:
    """Labels of AMS trays with filament loaded but no spool assigned.

    The external spool is not counted since many setups never use it.
    """
    labels = []
    for printer in printers:
        multi_ams = len(printer.ams_units) > 1
        for ams in printer.ams_units:
            for tray in ams.trays:
                if tray.has_filament and not tray.assigned_spool:
                    prefix = f"{ams.name} " if multi_ams else ""
                    labels.append(f"{prefix}Tray {tray.tray_number}")
    return labels
