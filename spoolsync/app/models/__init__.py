from spoolsync.app.models.activity_log import ActivityLogEntry
from spoolsync.app.models.settings import Settings

__all__ = [
    "ActivityLogEntry",
    "Settings",
]
