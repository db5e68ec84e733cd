"""Shared test fixtures for SpoolSync tests."""

import logging
import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# IMPORTANT: Set environment variables BEFORE any app imports
# This must happen before settings/config are loaded
os.environ["LOG_TO_FILE"] = "false"
os.environ["DEBUG"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

# Ensure settings use our env vars - import and override before database import
from spoolsync.app.core.config import settings  # noqa: E402

settings.log_to_file = False
# Connection values must come from each test, never from a developer's .env
settings.spoolman_url = ""
settings.ha_url = ""
settings.ha_token = ""

from spoolsync.app.core.database import Base  # noqa: E402
from spoolsync.app.core.events import SpoolEventBroadcaster  # noqa: E402

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(autouse=True)
def _clear_connection_env(monkeypatch):
    for var in ("SPOOLMAN_URL", "HA_URL", "HA_TOKEN"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    # Import all models to register them
    from spoolsync.app.models import activity_log, settings  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def broadcaster():
    b = SpoolEventBroadcaster()
    yield b
    b.close()


@pytest.fixture
def received_events(broadcaster):
    """Events published on the test broadcaster, in order."""
    events = []
    broadcaster.subscribe(events.append)
    return events


@pytest.fixture
async def async_client(test_engine, broadcaster) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client.

    ASGITransport does not run the lifespan, so the broadcaster is attached
    to app.state here.
    """
    from spoolsync.app.core.database import get_db
    from spoolsync.app.main import app

    # Create a new session maker for the test engine
    test_async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with test_async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.state.broadcaster = broadcaster

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Mock External Services
# ============================================================================


def make_spool(
    spool_id: int,
    *,
    tray: str | None = None,
    tag: str | None = None,
    remaining: float | None = 1000.0,
    name: str = "PLA Basic",
    material: str = "PLA",
    color_hex: str = "FFFFFF",
) -> dict:
    """Build a Spoolman spool dict with JSON-encoded extra fields."""
    extra = {}
    if tray is not None:
        extra["active_tray"] = f'"{tray}"'
    if tag is not None:
        extra["tag_uid"] = f'"{tag}"'
    return {
        "id": spool_id,
        "remaining_weight": remaining,
        "filament": {"name": name, "material": material, "color_hex": color_hex},
        "extra": extra,
    }


@pytest.fixture
def spool_factory():
    return make_spool


@pytest.fixture
def mock_spoolman_client():
    """A SpoolmanClient stand-in with every network call mocked."""
    client = MagicMock()
    client.base_url = "http://spoolman:7912"
    client.get_spools = AsyncMock(return_value=[])
    client.get_spool = AsyncMock(return_value={})
    client.use_spool = AsyncMock(return_value={})
    client.assign_spool_to_tray = AsyncMock(return_value={})
    client.clear_assignment = AsyncMock(return_value={})
    client.health_check = AsyncMock(return_value=True)
    client.ensure_extra_fields = AsyncMock(return_value=True)
    return client


@pytest.fixture
def spoolman_configured(mock_spoolman_client):
    """Route the API through the mocked Spoolman client."""
    resolver = AsyncMock(return_value=mock_spoolman_client)
    with (
        patch("spoolsync.app.api.routes.webhook.resolve_spoolman_client", resolver),
        patch("spoolsync.app.api.routes.spools.resolve_spoolman_client", resolver),
        patch("spoolsync.app.api.routes.printers.resolve_spoolman_client", resolver),
    ):
        yield mock_spoolman_client


@pytest.fixture
def mock_homeassistant_service():
    """Mock the Home Assistant service used by the printers route."""
    with patch("spoolsync.app.api.routes.printers.homeassistant_service") as mock:
        mock.is_configured = True
        mock.get_sensor_states = AsyncMock(return_value=[])
        mock.test_connection = AsyncMock(return_value={"success": True, "message": "API running", "error": None})
        yield mock


# ============================================================================
# Sample Data Fixtures
# ============================================================================


def ha_entity(entity_id: str, state="unknown", **attributes) -> dict:
    return {"entity_id": entity_id, "state": state, "attributes": attributes}


@pytest.fixture
def x1c_snapshot():
    """Home Assistant states for one X1C with two AMS units and an external spool."""
    prefix = "sensor.x1c_abc"
    entities = [
        ha_entity(f"{prefix}_print_status", "running", friendly_name="X1C Print Status"),
        ha_entity(f"{prefix}_ams_1_humidity", "12"),
        ha_entity(f"{prefix}_ams_2_humidity", "18"),
        ha_entity(f"{prefix}_external_spool", "Empty"),
        ha_entity(f"{prefix}_current_stage", "printing"),
        ha_entity(f"{prefix}_print_weight", "42.5"),
        ha_entity(f"{prefix}_print_progress", "37"),
        ha_entity("sensor.kitchen_temperature", "21"),
    ]
    for ams in (1, 2):
        for tray in (1, 2, 3, 4):
            entities.append(
                ha_entity(
                    f"{prefix}_ams_{ams}_tray_{tray}",
                    "PLA Basic",
                    name="PLA Basic",
                    type="PLA",
                    color="#FFFFFFFF",
                    tag_uid="0000000000000000",
                    remain=80,
                    active=(ams == 1 and tray == 1),
                )
            )
    return entities


# ============================================================================
# Log Capture Fixtures for Error Detection
# ============================================================================


class LogCapture(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)

    def clear(self):
        self.records.clear()

    def get_errors(self) -> list[logging.LogRecord]:
        """Get all ERROR and CRITICAL level records."""
        return [r for r in self.records if r.levelno >= logging.ERROR]

    def get_warnings(self) -> list[logging.LogRecord]:
        """Get all WARNING level records."""
        return [r for r in self.records if r.levelno == logging.WARNING]

    def has_errors(self) -> bool:
        """Check if any errors were logged."""
        return len(self.get_errors()) > 0

    def format_errors(self) -> str:
        """Format all errors as a string for assertion messages."""
        errors = self.get_errors()
        if not errors:
            return "No errors"
        formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
        return "\n".join(formatter.format(r) for r in errors)


@pytest.fixture
def capture_logs():
    """Fixture that captures log output during a test.

    Usage:
        def test_something(capture_logs):
            some_function()
            assert not capture_logs.has_errors(), capture_logs.format_errors()
    """
    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    # Attach to root logger to capture all logs
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler

    root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)
