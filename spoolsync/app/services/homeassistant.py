"""Service for reading printer telemetry from Home Assistant via REST API."""

import logging

import httpx

logger = logging.getLogger(__name__)


class HomeAssistantError(Exception):
    """Raised when Home Assistant cannot be queried."""


class HomeAssistantService:
    """Service for reading ha-bambulab sensor entities via the HA REST API."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self.base_url: str = ""
        self.token: str = ""

    def configure(self, url: str, token: str, timeout: float | None = None):
        """Configure HA connection settings."""
        self.base_url = url.rstrip("/") if url else ""
        self.token = token or ""
        if timeout is not None:
            self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.token)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

    async def get_states(self) -> list[dict]:
        """Fetch all entity states (the printer snapshot).

        Returns:
            List of raw entities: {"entity_id", "state", "attributes"}.

        Raises:
            HomeAssistantError: if HA is not configured or the request fails.
        """
        if not self.is_configured:
            raise HomeAssistantError("Home Assistant is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(f"{self.base_url}/api/states", headers=self._headers())
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise HomeAssistantError(f"Home Assistant returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise HomeAssistantError(f"Could not reach Home Assistant: {e}") from e

    async def get_sensor_states(self) -> list[dict]:
        """Fetch only sensor entities."""
        states = await self.get_states()
        return [s for s in states if s.get("entity_id", "").startswith("sensor.")]

    async def test_connection(self, url: str, token: str) -> dict:
        """Test connection to Home Assistant.

        Returns dict with:
            - success: bool
            - message: str or None (HA message on success)
            - error: str or None (error message on failure)
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{url.rstrip('/')}/api/",
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                data = response.json()
                return {
                    "success": True,
                    "message": data.get("message", "Connected"),
                    "error": None,
                }
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 401:
                return {"success": False, "message": None, "error": "Invalid access token"}
            return {"success": False, "message": None, "error": f"HTTP {e.response.status_code}"}
        except httpx.TimeoutException:
            return {"success": False, "message": None, "error": "Connection timeout"}
        except httpx.ConnectError:
            return {"success": False, "message": None, "error": "Could not connect to Home Assistant"}
        except Exception as e:
            return {"success": False, "message": None, "error": str(e)}


# Singleton instance
homeassistant_service = HomeAssistantService()
