from datetime import datetime

from pydantic import BaseModel


class ActivityEntrySchema(BaseModel):
    id: int
    type: str
    message: str
    details: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class ActivityResponse(BaseModel):
    items: list[ActivityEntrySchema]
    total: int
