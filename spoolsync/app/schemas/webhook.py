from pydantic import BaseModel, ConfigDict, Field, field_validator


class WebhookPayload(BaseModel):
    """Fields common to every webhook event. Unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    event: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _stringify_ids(cls, value, info):
        # HA templates may render identifiers as numbers
        if info.field_name.endswith(("_id", "_uid")) and isinstance(value, int | float):
            return str(value)
        return value


class SpoolUsagePayload(WebhookPayload):
    used_weight: float | None = Field(default=None, allow_inf_nan=False)
    active_tray_id: str | None = None


class TrayChangePayload(WebhookPayload):
    tray_entity_id: str | None = None
    tag_uid: str | None = None


class PrintStartPayload(WebhookPayload):
    active_tray_id: str | None = None
    required_weight: float | None = Field(default=None, allow_inf_nan=False)


class AssignRequest(BaseModel):
    tray_id: str
    spool_id: int
