"""Spoolman integration service for spool inventory reads and writes."""

import json
import logging

import httpx

logger = logging.getLogger(__name__)

# Extra fields SpoolSync reads/writes on Spoolman spools. Spoolman stores extra
# values JSON-encoded, so "abc" is persisted as '"abc"'.
TAG_UID_KEY = "tag_uid"
ACTIVE_TRAY_KEY = "active_tray"

EXTRA_FIELDS = {
    TAG_UID_KEY: "Tag UID",
    ACTIVE_TRAY_KEY: "Active Tray",
}


class SpoolmanError(Exception):
    """Raised when a Spoolman request fails."""


def encode_extra(value: str) -> str:
    """Encode a value the way Spoolman stores extra fields."""
    return json.dumps(value)


def decode_extra(raw: str | None) -> str | None:
    """Decode a Spoolman extra field value; empty values become None."""
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        value = raw
    return value or None


def spool_extra(spool: dict, key: str) -> str | None:
    """Raw (still encoded) extra value of a spool dict."""
    extra = spool.get("extra") or {}
    return extra.get(key)


def spool_display_name(spool: dict) -> str | None:
    filament = spool.get("filament") or {}
    return filament.get("name")


class SpoolmanClient:
    """Client for interacting with Spoolman API."""

    def __init__(self, base_url: str, timeout: float = 10.0):
        """Initialize the Spoolman client.

        Args:
            base_url: The base URL of the Spoolman server (e.g., http://localhost:7912)
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_url = f"{self.base_url}/api/v1"
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self._connected = False

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client with connection pooling limits.

        Configures the client to prevent idle connection issues:
        - max_keepalive_connections=5: Limit number of persistent connections
        - keepalive_expiry=30: Close idle connections after 30 seconds
        - max_connections=10: Limit total connections to prevent resource exhaustion
        """
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                    keepalive_expiry=30.0,
                ),
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.request(method, f"{self.api_url}{path}", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise SpoolmanError(
                f"Spoolman returned {e.response.status_code} for {method} {path}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise SpoolmanError(f"Spoolman request {method} {path} failed: {e}") from e
        return response

    async def health_check(self) -> bool:
        """Check if Spoolman server is reachable.

        Returns:
            True if server is healthy, False otherwise.
        """
        try:
            client = await self._get_client()
            response = await client.get(f"{self.api_url}/health")
            self._connected = response.status_code == 200
            return self._connected
        except Exception as e:
            logger.warning("Spoolman health check failed: %s", e)
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        """Check if client is connected to Spoolman."""
        return self._connected

    async def get_spools(self) -> list[dict]:
        """Get all spools from Spoolman.

        Raises:
            SpoolmanError: If the request fails. No retry is attempted.
        """
        response = await self._request("GET", "/spool")
        return response.json()

    async def get_spool(self, spool_id: int) -> dict:
        response = await self._request("GET", f"/spool/{spool_id}")
        return response.json()

    async def _patch_extra(self, spool: dict, changes: dict[str, str]) -> dict:
        # Send the merged extra dict so unrelated extra fields survive the update
        extra = dict(spool.get("extra") or {})
        extra.update(changes)
        response = await self._request("PATCH", f"/spool/{spool['id']}", json={"extra": extra})
        return response.json()

    async def use_spool(self, spool_id: int, used_weight: float) -> dict:
        """Record filament usage for a spool.

        Spoolman applies the deduction atomically on its side.

        Args:
            spool_id: ID of the spool
            used_weight: Amount of filament used in grams

        Returns:
            Updated spool dictionary.
        """
        response = await self._request("PUT", f"/spool/{spool_id}/use", json={"use_weight": used_weight})
        logger.info("Recorded %.2fg usage on spool %s", used_weight, spool_id)
        return response.json()

    async def assign_spool_to_tray(
        self,
        spool_id: int,
        tray_entity_id: str,
        cached_spools: list[dict] | None = None,
    ) -> dict:
        """Claim a tray for a spool.

        Any other spool currently claiming the tray is released first so that
        at most one spool holds a given active_tray value. The target spool's
        previous claim is overwritten.

        Args:
            spool_id: ID of the spool to assign
            tray_entity_id: Tray sensor entity ID
            cached_spools: Optional pre-fetched list of spools (avoids API call)

        Returns:
            Updated spool dictionary.
        """
        spools = cached_spools if cached_spools is not None else await self.get_spools()
        claim = encode_extra(tray_entity_id)

        target = None
        for spool in spools:
            if spool.get("id") == spool_id:
                target = spool
            elif spool_extra(spool, ACTIVE_TRAY_KEY) == claim:
                logger.info("Releasing tray %s from spool %s", tray_entity_id, spool["id"])
                await self._patch_extra(spool, {ACTIVE_TRAY_KEY: encode_extra("")})

        if target is None:
            target = await self.get_spool(spool_id)

        result = await self._patch_extra(target, {ACTIVE_TRAY_KEY: claim})
        logger.info("Assigned spool %s to tray %s", spool_id, tray_entity_id)
        return result

    async def clear_assignment(self, spool_id: int, spool: dict | None = None) -> dict:
        """Release whatever tray a spool currently claims.

        Args:
            spool_id: ID of the spool
            spool: Optional pre-fetched spool (avoids API call)
        """
        if spool is None:
            spool = await self.get_spool(spool_id)
        result = await self._patch_extra(spool, {ACTIVE_TRAY_KEY: encode_extra("")})
        logger.info("Cleared tray assignment for spool %s", spool_id)
        return result

    async def ensure_extra_fields(self) -> bool:
        """Ensure the tag_uid and active_tray extra fields exist for spools.

        Spoolman requires extra fields to be registered before use.

        Returns:
            True if all fields exist or were created, False on failure.
        """
        ok = True
        client = await self._get_client()
        for key, name in EXTRA_FIELDS.items():
            try:
                response = await client.get(f"{self.api_url}/field/spool/{key}")
                if response.status_code == 200:
                    logger.debug("Spoolman '%s' extra field already exists", key)
                    continue

                field_data = {"name": name, "field_type": "text", "default_value": None}
                response = await client.post(f"{self.api_url}/field/spool/{key}", json=field_data)
                if response.status_code in (200, 201):
                    logger.info("Created '%s' extra field in Spoolman", key)
                    continue

                logger.warning("Failed to create '%s' extra field: %s - %s", key, response.status_code, response.text)
                ok = False
            except Exception as e:
                logger.warning("Failed to ensure '%s' extra field exists: %s", key, e)
                ok = False
        return ok


# Global client instance (initialized when settings are loaded)
_spoolman_client: SpoolmanClient | None = None


async def get_spoolman_client() -> SpoolmanClient | None:
    """Get the global Spoolman client instance.

    Returns:
        SpoolmanClient instance or None if not configured.
    """
    return _spoolman_client


async def init_spoolman_client(url: str, timeout: float = 10.0) -> SpoolmanClient:
    """Initialize the global Spoolman client.

    Args:
        url: Spoolman server URL
        timeout: Per-request timeout in seconds

    Returns:
        Initialized SpoolmanClient instance.
    """
    global _spoolman_client
    if _spoolman_client:
        await _spoolman_client.close()

    _spoolman_client = SpoolmanClient(url, timeout=timeout)
    return _spoolman_client


async def close_spoolman_client():
    """Close the global Spoolman client."""
    global _spoolman_client
    if _spoolman_client:
        await _spoolman_client.close()
        _spoolman_client = None
