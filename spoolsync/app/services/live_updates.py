"""Client for the SpoolSync live update stream.

Consumes the server-sent event endpoint, hands every domain event to a
callback and reconnects after a fixed delay when the stream drops.
"""

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx
from pydantic import ValidationError

from spoolsync.app.schemas.events import SyncEventBase, sync_event_adapter

logger = logging.getLogger(__name__)

CONTROL_TYPES = {"connected", "heartbeat"}

EventCallback = Callable[[SyncEventBase], Awaitable[None] | None]


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data payload of each SSE message; comments and retry hints are skipped."""
    data: list[str] = []
    async for line in lines:
        if not line:
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip(" "))
    if data:
        yield "\n".join(data)


def parse_event(raw: str) -> SyncEventBase | None:
    """Decode one message; returns None for control frames and unknown types."""
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed live update: %s", raw)
        return None

    if not isinstance(payload, dict) or payload.get("type") in CONTROL_TYPES:
        return None

    try:
        return sync_event_adapter.validate_python(payload)
    except ValidationError:
        logger.debug("Ignoring unknown live update type %s", payload.get("type"))
        return None


class LiveUpdateClient:
    """Follows the event stream until stopped."""

    def __init__(
        self,
        url: str,
        on_event: EventCallback,
        reconnect_delay: float = 5.0,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.on_event = on_event
        self.reconnect_delay = reconnect_delay
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._stopped = False
        self.connect_attempts = 0

    @property
    def stopped(self) -> bool:
        return self._stopped

    def stop(self):
        self._stopped = True

    async def _dispatch(self, event: SyncEventBase):
        # A failing callback must not tear down the stream
        try:
            result = self.on_event(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Live update callback failed for %s event: %s", event.type, e, exc_info=True)

    async def listen_once(self):
        """Connect and consume the stream until it ends or the client is stopped."""
        if self._client is None:
            # No read timeout; heartbeats keep the connection alive
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, read=None))

        self.connect_attempts += 1
        async with self._client.stream("GET", self.url, headers={"Accept": "text/event-stream"}) as response:
            response.raise_for_status()
            logger.info("Connected to live updates at %s", self.url)
            async for raw in iter_sse_data(response.aiter_lines()):
                event = parse_event(raw)
                if event is not None:
                    await self._dispatch(event)
                if self._stopped:
                    return

    async def run(self):
        """Listen forever, waiting reconnect_delay between attempts."""
        try:
            while not self._stopped:
                try:
                    await self.listen_once()
                except httpx.HTTPError as e:
                    logger.warning("Live update stream failed: %s", e)
                if self._stopped:
                    break
                logger.info("Reconnecting to live updates in %.1fs", self.reconnect_delay)
                await asyncio.sleep(self.reconnect_delay)
        finally:
            await self.close()

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
