from pathlib import Path

from pydantic_settings import BaseSettings

# Application version - single source of truth
APP_VERSION = "0.3.0"

# Base directory for path calculations
_base_dir = Path(__file__).resolve().parent.parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "SpoolSync"
    debug: bool = False  # Default to production mode

    # Paths
    base_dir: Path = _base_dir
    log_dir: Path = base_dir / "logs"
    database_url: str = f"sqlite+aiosqlite:///{_base_dir / 'spoolsync.db'}"

    # Logging
    log_level: str = "INFO"  # Override with LOG_LEVEL env var or DEBUG=true
    log_to_file: bool = True  # Set to false to disable file logging

    # API
    api_prefix: str = "/api/v1"

    # Connections (env values take precedence over the settings table)
    spoolman_url: str = ""
    ha_url: str = ""
    ha_token: str = ""
    http_timeout: float = 10.0

    # Live updates
    event_heartbeat_seconds: float = 30.0
    event_reconnect_seconds: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

# Ensure directories exist
if settings.log_to_file:
    settings.log_dir.mkdir(exist_ok=True)
