"""Service for appending activity log entries.

Entries are written by the sync engine and the manual assignment routes and
are never read back on those paths.
"""

import json
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.models.activity_log import ActivityLogEntry

logger = logging.getLogger(__name__)


async def write_activity(
    db: AsyncSession,
    *,
    type: str,
    message: str,
    details: dict | str | None = None,
) -> ActivityLogEntry:
    """Append an activity log entry."""
    if details is not None and not isinstance(details, str):
        details = json.dumps(details, default=str)

    entry = ActivityLogEntry(type=type, message=message[:500], details=details)
    db.add(entry)
    await db.flush()
    logger.debug("Activity [%s] %s", type, message)
    return entry
