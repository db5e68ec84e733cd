from pydantic import BaseModel


class ConnectionSettings(BaseModel):
    spoolman_url: str = ""
    ha_url: str = ""
    ha_token_set: bool = False
    spoolman_url_from_env: bool = False
    ha_url_from_env: bool = False
    ha_token_from_env: bool = False


class ConnectionSettingsUpdate(BaseModel):
    spoolman_url: str | None = None
    ha_url: str | None = None
    ha_token: str | None = None


class ConnectionStatus(BaseModel):
    homeassistant: dict | None = None
    spoolman: dict | None = None
