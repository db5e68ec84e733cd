"""Localized entity name patterns for the ha-bambulab integration.

ha-bambulab localizes entity IDs based on Home Assistant's language setting, so
the same sensor shows up as ``sensor.x1c_..._print_status`` for one user and
``sensor.x1c_..._druckstatus`` for another. Every localized fragment lives in
the tables below; adding a language means adding fragments here and nothing
else.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from types import MappingProxyType
from typing import Mapping

logger = logging.getLogger(__name__)


class Locale(str, Enum):
    EN = "en"
    DE = "de"
    NL = "nl"
    ES = "es"
    IT = "it"


BASE_LOCALE = Locale.EN


class EntityKind(str, Enum):
    PRINT_STATUS = "print_status"
    AMS_HUMIDITY = "ams_humidity"
    TRAY = "tray"
    EXTERNAL_SPOOL = "external_spool"
    CURRENT_STAGE = "current_stage"
    PRINT_WEIGHT = "print_weight"
    PRINT_PROGRESS = "print_progress"


class NoMatchError(LookupError):
    """Raised when an entity ID does not match any known entity kind."""


@dataclass(frozen=True)
class Fragment:
    """A localized entity name fragment and the locales that use it."""

    name: str
    locales: tuple[Locale, ...]

    @property
    def locale(self) -> Locale:
        return self.locales[0]


def _f(name: str, *locales: Locale) -> Fragment:
    return Fragment(name, tuple(locales))


_SUFFIXES: dict[EntityKind, tuple[Fragment, ...]] = {
    EntityKind.PRINT_STATUS: (
        _f("print_status", Locale.EN),
        _f("druckstatus", Locale.DE),
        _f("printstatus", Locale.NL),
        _f("estado_de_la_impresion", Locale.ES),
        _f("stato_di_stampa", Locale.IT),
    ),
    EntityKind.AMS_HUMIDITY: (
        _f("humidity", Locale.EN),
        _f("luftfeuchtigkeit", Locale.DE),
        _f("vochtigheid", Locale.NL),
        _f("humedad", Locale.ES),
        _f("umidita", Locale.IT),
    ),
    EntityKind.TRAY: (
        _f("tray", Locale.EN, Locale.NL),
        _f("slot", Locale.DE, Locale.IT),
        _f("bandeja", Locale.ES),
    ),
    EntityKind.EXTERNAL_SPOOL: (
        _f("external_spool", Locale.EN),
        _f("externalspool_external_spool", Locale.EN),  # newer ha-bambulab format
        _f("externe_spule", Locale.DE),
        _f("externespule_externe_spule", Locale.DE),
        _f("externe_spoel", Locale.NL),
        _f("externespoel_externe_spoel", Locale.NL),
        _f("bobina_externa", Locale.ES),
        _f("bobinaexterna_bobina_externa", Locale.ES),
        _f("bobina_esterna", Locale.IT),
        _f("bobinaesterna_bobina_esterna", Locale.IT),
    ),
    EntityKind.CURRENT_STAGE: (
        _f("current_stage", Locale.EN),
        _f("aktueller_arbeitsschritt", Locale.DE),
        _f("huidige_fase", Locale.NL),
        _f("estado_actual", Locale.ES),
        _f("fase_corrente", Locale.IT),
    ),
    EntityKind.PRINT_WEIGHT: (
        _f("print_weight", Locale.EN),
        _f("gewicht_des_drucks", Locale.DE),
        _f("gewicht_van_print", Locale.NL),
        _f("peso_de_la_impresion", Locale.ES),
        _f("grammatura_stampa", Locale.IT),
    ),
    EntityKind.PRINT_PROGRESS: (
        _f("print_progress", Locale.EN),
        _f("druckfortschritt", Locale.DE),
        _f("printvoortgang", Locale.NL),
        _f("progreso_de_la_impresion", Locale.ES),
        _f("progressi_di_stampa", Locale.IT),
    ),
}

# Friendly name suffixes stripped from printer names ("Bambu Lab P1S Print Status")
FRIENDLY_NAME_SUFFIXES: tuple[str, ...] = (
    "Print Status",
    "Druckstatus",
    "Printstatus",
    "Estado de la Impresión",
    "Stato di stampa",
)

# Canonical entity names per locale, used when writing automation text
_LOCALIZED_ENTITIES: dict[Locale, dict[EntityKind, str]] = {
    Locale.EN: {
        EntityKind.CURRENT_STAGE: "current_stage",
        EntityKind.PRINT_WEIGHT: "print_weight",
        EntityKind.PRINT_PROGRESS: "print_progress",
        EntityKind.EXTERNAL_SPOOL: "external_spool",
    },
    Locale.DE: {
        EntityKind.CURRENT_STAGE: "aktueller_arbeitsschritt",
        EntityKind.PRINT_WEIGHT: "gewicht_des_drucks",
        EntityKind.PRINT_PROGRESS: "druckfortschritt",
        EntityKind.EXTERNAL_SPOOL: "externe_spule",
    },
    Locale.NL: {
        EntityKind.CURRENT_STAGE: "huidige_fase",
        EntityKind.PRINT_WEIGHT: "gewicht_van_print",
        EntityKind.PRINT_PROGRESS: "printvoortgang",
        EntityKind.EXTERNAL_SPOOL: "externe_spoel",
    },
    Locale.ES: {
        EntityKind.CURRENT_STAGE: "estado_actual",
        EntityKind.PRINT_WEIGHT: "peso_de_la_impresion",
        EntityKind.PRINT_PROGRESS: "progreso_de_la_impresion",
        EntityKind.EXTERNAL_SPOOL: "bobina_externa",
    },
    Locale.IT: {
        EntityKind.CURRENT_STAGE: "fase_corrente",
        EntityKind.PRINT_WEIGHT: "grammatura_stampa",
        EntityKind.PRINT_PROGRESS: "progressi_di_stampa",
        EntityKind.EXTERNAL_SPOOL: "bobina_esterna",
    },
}

# Kinds are tried in this order; tray and AMS patterns are the most specific
_CLASSIFY_ORDER: tuple[EntityKind, ...] = (
    EntityKind.TRAY,
    EntityKind.AMS_HUMIDITY,
    EntityKind.EXTERNAL_SPOOL,
    EntityKind.PRINT_STATUS,
    EntityKind.CURRENT_STAGE,
    EntityKind.PRINT_WEIGHT,
    EntityKind.PRINT_PROGRESS,
)


def suffix_table() -> Mapping[EntityKind, tuple[Fragment, ...]]:
    """Return the read-only table of localized fragments per entity kind."""
    return MappingProxyType(_SUFFIXES)


def localized_entities(locale: Locale) -> Mapping[EntityKind, str]:
    """Return the canonical entity names for a locale."""
    return MappingProxyType(_LOCALIZED_ENTITIES[locale])


@dataclass(frozen=True)
class EntityMatch:
    """Result of classifying a raw sensor entity ID."""

    entity_id: str
    kind: EntityKind
    prefix: str
    fragment: Fragment
    ams_index: int | None = None
    tray_number: int | None = None
    disambiguator: int | None = None

    @property
    def locale(self) -> Locale:
        return self.fragment.locale

    @property
    def printer_key(self) -> str:
        """Grouping key for the printer this entity belongs to.

        The hub appends ``_2``, ``_3``... when a second device shares a base
        name, so the disambiguator is part of the device identity.
        """
        if self.disambiguator is None:
            return self.prefix
        return f"{self.prefix}_{self.disambiguator}"


@dataclass(frozen=True)
class PrinterIdentity:
    prefix: str
    locale: Locale


def _alternation(kind: EntityKind) -> str:
    # Longest first so a fragment never shadows a longer one sharing its start
    names = sorted((f.name for f in _SUFFIXES[kind]), key=len, reverse=True)
    return "|".join(re.escape(name) for name in names)


@lru_cache(maxsize=None)
def build_pattern(kind: EntityKind) -> re.Pattern:
    """Build the anchored pattern for an entity kind.

    Every pattern allows the optional ``_N`` suffix the hub appends when
    several devices share a base name.
    """
    names = _alternation(kind)
    if kind == EntityKind.TRAY:
        body = rf"(?P<prefix>.+?)_ams_(?P<ams>\d+)_(?P<fragment>{names})_(?P<tray>\d+)"
    elif kind == EntityKind.AMS_HUMIDITY:
        body = rf"(?P<prefix>.+?)_ams_(?P<ams>\d+)_(?P<fragment>{names})"
    else:
        body = rf"(?P<prefix>.+?)_(?P<fragment>{names})"
    return re.compile(rf"^sensor\.{body}(?:_(?P<dup>\d+))?$")


def _fragment(kind: EntityKind, name: str) -> Fragment:
    for fragment in _SUFFIXES[kind]:
        if fragment.name == name:
            return fragment
    raise NoMatchError(f"Unknown {kind.value} fragment: {name}")


def _match(entity_id: str, kind: EntityKind) -> EntityMatch | None:
    m = build_pattern(kind).match(entity_id)
    if not m:
        return None
    groups = m.groupdict()
    return EntityMatch(
        entity_id=entity_id,
        kind=kind,
        prefix=groups["prefix"],
        fragment=_fragment(kind, groups["fragment"]),
        ams_index=int(groups["ams"]) if groups.get("ams") else None,
        tray_number=int(groups["tray"]) if groups.get("tray") else None,
        disambiguator=int(groups["dup"]) if groups.get("dup") else None,
    )


def classify(entity_id: str) -> EntityMatch:
    """Resolve a raw entity ID to its entity kind and captures.

    Raises:
        NoMatchError: if the ID does not match any known kind.
    """
    if entity_id and entity_id.startswith("sensor."):
        for kind in _CLASSIFY_ORDER:
            match = _match(entity_id, kind)
            if match:
                return match
    raise NoMatchError(f"Unrecognized entity: {entity_id}")


def is_print_status_entity(entity_id: str) -> bool:
    return _match(entity_id, EntityKind.PRINT_STATUS) is not None


def detect_locale(printer_entity_id: str) -> Locale:
    """Detect the locale from a printer's print status entity ID.

    e.g. "sensor.bambulab_p1s_druckstatus" -> Locale.DE. Unknown suffixes fall
    back to the base locale.
    """
    match = _match(printer_entity_id, EntityKind.PRINT_STATUS)
    return match.locale if match else BASE_LOCALE


def extract_prefix(entity_id: str) -> str:
    """Extract the printer grouping key from any recognized entity ID.

    e.g. "sensor.x1c_00m09d462101575_print_status" -> "x1c_00m09d462101575"
    """
    try:
        return classify(entity_id).printer_key
    except NoMatchError:
        pass

    # Fallback: strip known print status patterns
    result = re.sub(r"^sensor\.", "", entity_id)
    for fragment in _SUFFIXES[EntityKind.PRINT_STATUS]:
        result = re.sub(rf"_{re.escape(fragment.name)}(?:_\d+)?$", "", result)
    return result


def printer_identity(entity_id: str) -> PrinterIdentity:
    match = classify(entity_id)
    return PrinterIdentity(prefix=match.printer_key, locale=match.locale)


def clean_friendly_name(friendly_name: str | None, fallback: str) -> str:
    """Remove the localized status suffix from a friendly name.

    e.g. "Bambu Lab P1S Print Status" -> "Bambu Lab P1S"
    """
    if not friendly_name:
        return fallback

    cleaned = friendly_name
    for suffix in FRIENDLY_NAME_SUFFIXES:
        cleaned = re.sub(rf" {re.escape(suffix)}$", "", cleaned, flags=re.IGNORECASE)
    return cleaned or fallback


def localized_entity_name(printer_entity_id: str, kind: EntityKind) -> str:
    """Localized name of ``kind`` for the printer owning ``printer_entity_id``."""
    return _LOCALIZED_ENTITIES[detect_locale(printer_entity_id)][kind]
