from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from spoolsync.app.core.database import Base


class ActivityLogEntry(Base):
    """Append-only audit entry written for every sync attempt and manual assignment."""

    __tablename__ = "activity_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    type: Mapped[str] = mapped_column(String(50), index=True)  # webhook, spool_usage, spool_change, error...
    message: Mapped[str] = mapped_column(String(500))
    details: Mapped[str | None] = mapped_column(Text)  # JSON-encoded payload
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
