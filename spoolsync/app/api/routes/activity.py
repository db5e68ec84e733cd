import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from spoolsync.app.core.database import get_db
from spoolsync.app.models.activity_log import ActivityLogEntry
from spoolsync.app.schemas.activity import ActivityEntrySchema, ActivityResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get("/", response_model=ActivityResponse)
async def get_activity(
    type: str | None = None,
    search: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
    """Get the activity log, newest first."""
    query = select(ActivityLogEntry)
    count_query = select(func.count(ActivityLogEntry.id))

    if type:
        query = query.where(ActivityLogEntry.type == type)
        count_query = count_query.where(ActivityLogEntry.type == type)
    if search:
        query = query.where(ActivityLogEntry.message.ilike(f"%{search}%"))
        count_query = count_query.where(ActivityLogEntry.message.ilike(f"%{search}%"))
    if date_from:
        query = query.where(ActivityLogEntry.created_at >= date_from)
        count_query = count_query.where(ActivityLogEntry.created_at >= date_from)
    if date_to:
        query = query.where(ActivityLogEntry.created_at <= date_to)
        count_query = count_query.where(ActivityLogEntry.created_at <= date_to)

    total_result = await db.execute(count_query)
    total = total_result.scalar() or 0

    query = query.order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    entries = result.scalars().all()

    return ActivityResponse(
        items=[ActivityEntrySchema.model_validate(e) for e in entries],
        total=total,
    )


@router.delete("/")
async def clear_activity(db: AsyncSession = Depends(get_db)):
    """Clear the activity log."""
    result = await db.execute(delete(ActivityLogEntry))
    deleted = result.rowcount
    await db.commit()

    logger.info("Activity log cleared: %d entries deleted", deleted)
    return {"deleted": deleted}
