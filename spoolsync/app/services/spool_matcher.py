"""Match printer tray events to Spoolman spools.

Two strategies exist and are never combined:

* by physical tag: the spool whose ``extra.tag_uid`` equals the tag the
  printer read (tray_change events);
* by tray claim: the spool whose ``extra.active_tray`` equals the tray entity
  ID, set when a user assigned the spool (spool_usage events). This works for
  every vendor since it does not depend on RFID.

There is deliberately no colour/material fallback: two spools can share both,
and a wrong automatic match silently corrupts usage tracking.
"""

import logging

from spoolsync.app.services.spoolman import (
    ACTIVE_TRAY_KEY,
    TAG_UID_KEY,
    decode_extra,
    encode_extra,
    spool_extra,
)

logger = logging.getLogger(__name__)

UNKNOWN_TAG = "unknown"


def is_valid_tag(tag_uid: str | None) -> bool:
    """Check if a tag reading is usable for matching."""
    if not tag_uid:
        return False
    tag = tag_uid.strip()
    return bool(tag) and tag.lower() != UNKNOWN_TAG and tag != "0" * len(tag)


def _find_unique(spools: list[dict], key: str, value: str) -> dict | None:
    encoded = encode_extra(value)
    matches = [s for s in spools if spool_extra(s, key) == encoded]
    if len(matches) > 1:
        logger.warning(
            "Ambiguous %s %s: claimed by spools %s, refusing to match",
            key,
            value,
            [s.get("id") for s in matches],
        )
        return None
    return matches[0] if matches else None


def find_spool_by_tag(spools: list[dict], tag_uid: str | None) -> dict | None:
    """Find the single spool carrying ``tag_uid``.

    Returns None for empty/unknown tags, when no spool carries the tag, or
    when several do.
    """
    if not is_valid_tag(tag_uid):
        return None
    return _find_unique(spools, TAG_UID_KEY, tag_uid.strip())


def find_spool_by_tray(spools: list[dict], tray_id: str | None) -> dict | None:
    """Find the single spool claiming ``tray_id``."""
    if not tray_id:
        return None
    return _find_unique(spools, ACTIVE_TRAY_KEY, tray_id)


def spools_by_tray(spools: list[dict]) -> dict[str, dict]:
    """Index spools by the (decoded) tray they claim.

    Trays claimed by more than one spool are left out.
    """
    index: dict[str, dict] = {}
    duplicates: set[str] = set()
    for spool in spools:
        tray = decode_extra(spool_extra(spool, ACTIVE_TRAY_KEY))
        if not tray:
            continue
        if tray in index:
            duplicates.add(tray)
        index[tray] = spool
    for tray in duplicates:
        logger.warning("Tray %s is claimed by several spools, ignoring", tray)
        del index[tray]
    return index
