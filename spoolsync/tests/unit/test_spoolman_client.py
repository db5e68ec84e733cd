"""Unit tests for the Spoolman HTTP client.

Requests go through an httpx.MockTransport that records every call.
"""

import json

import httpx
import pytest

from spoolsync.app.services.spoolman import (
    SpoolmanClient,
    SpoolmanError,
    decode_extra,
    encode_extra,
    spool_display_name,
)

TRAY = "sensor.x1c_abc_ams_1_tray_1"


class FakeSpoolman:
    """Minimal in-memory Spoolman answering the endpoints the client uses."""

    def __init__(self, spools):
        self.spools = {s["id"]: s for s in spools}
        self.requests: list[tuple[str, str, dict | None]] = []
        self.fields: set[str] = set()
        self.fail_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path.removeprefix("/api/v1")
        self.requests.append((request.method, path, body))

        if self.fail_with:
            return httpx.Response(self.fail_with, text="upstream broke")
        if path == "/health":
            return httpx.Response(200, json={"status": "healthy"})
        if path == "/spool" and request.method == "GET":
            return httpx.Response(200, json=list(self.spools.values()))
        if path.startswith("/field/spool/"):
            key = path.rsplit("/", 1)[1]
            if request.method == "GET":
                return httpx.Response(200 if key in self.fields else 404, json={})
            self.fields.add(key)
            return httpx.Response(200, json=[])

        parts = path.strip("/").split("/")
        spool = self.spools.get(int(parts[1]))
        if spool is None:
            return httpx.Response(404, json={"message": "not found"})
        if request.method == "GET":
            return httpx.Response(200, json=spool)
        if request.method == "PATCH":
            spool["extra"] = body["extra"]
            return httpx.Response(200, json=spool)
        if request.method == "PUT" and parts[-1] == "use":
            spool["remaining_weight"] = max(0.0, spool["remaining_weight"] - body["use_weight"])
            return httpx.Response(200, json=spool)
        return httpx.Response(405)

    def mutations(self):
        return [(m, p, b) for m, p, b in self.requests if m in ("PATCH", "PUT", "POST")]


def spool(spool_id, tray=None, tag=None, remaining=1000.0, **extra):
    data = dict(extra)
    if tray is not None:
        data["active_tray"] = encode_extra(tray)
    if tag is not None:
        data["tag_uid"] = encode_extra(tag)
    return {"id": spool_id, "remaining_weight": remaining, "filament": {"name": f"Spool {spool_id}"}, "extra": data}


def make_client(fake: FakeSpoolman) -> SpoolmanClient:
    client = SpoolmanClient("http://spoolman:7912/")
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    return client


@pytest.mark.unit
class TestExtraEncoding:
    def test_encode(self):
        assert encode_extra("abc") == '"abc"'
        assert encode_extra("") == '""'

    def test_decode(self):
        assert decode_extra('"abc"') == "abc"
        assert decode_extra('""') is None
        assert decode_extra(None) is None
        assert decode_extra("not json") == "not json"

    def test_display_name(self):
        assert spool_display_name({"filament": {"name": "PLA Basic"}}) == "PLA Basic"
        assert spool_display_name({}) is None


@pytest.mark.unit
class TestSpoolmanClient:
    async def test_base_url_is_normalized(self):
        client = SpoolmanClient("http://spoolman:7912/")
        assert client.base_url == "http://spoolman:7912"
        assert client.api_url == "http://spoolman:7912/api/v1"

    async def test_health_check(self):
        fake = FakeSpoolman([])
        client = make_client(fake)
        assert await client.health_check() is True
        assert client.is_connected

    async def test_health_check_failure(self):
        fake = FakeSpoolman([])
        fake.fail_with = 500
        client = make_client(fake)
        assert await client.health_check() is False
        assert not client.is_connected

    async def test_use_spool(self):
        fake = FakeSpoolman([spool(7, remaining=800.0)])
        client = make_client(fake)

        result = await client.use_spool(7, 50.0)

        assert result["remaining_weight"] == 750.0
        assert fake.mutations() == [("PUT", "/spool/7/use", {"use_weight": 50.0})]

    async def test_http_error_raises_spoolman_error(self):
        fake = FakeSpoolman([spool(7)])
        fake.fail_with = 503
        client = make_client(fake)

        with pytest.raises(SpoolmanError, match="503"):
            await client.get_spools()
        # No retry
        assert len(fake.requests) == 1

    async def test_transport_error_raises_spoolman_error(self):
        def broken(request):
            raise httpx.ConnectError("refused", request=request)

        client = SpoolmanClient("http://spoolman:7912")
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(broken))

        with pytest.raises(SpoolmanError):
            await client.use_spool(1, 5.0)


@pytest.mark.unit
class TestAssignment:
    async def test_assign_releases_previous_claim(self):
        fake = FakeSpoolman([spool(1, tray=TRAY), spool(2, tray="sensor.other_tray"), spool(3)])
        client = make_client(fake)

        await client.assign_spool_to_tray(3, TRAY)

        assert fake.spools[1]["extra"]["active_tray"] == '""'
        assert fake.spools[3]["extra"]["active_tray"] == encode_extra(TRAY)
        assert fake.spools[2]["extra"]["active_tray"] == encode_extra("sensor.other_tray")
        claims = [s for s in fake.spools.values() if s["extra"].get("active_tray") == encode_extra(TRAY)]
        assert [s["id"] for s in claims] == [3]

    async def test_assign_keeps_unrelated_extra_fields(self):
        fake = FakeSpoolman([spool(3, tag="A1B2", note='"keep me"')])
        client = make_client(fake)

        await client.assign_spool_to_tray(3, TRAY)

        assert fake.spools[3]["extra"] == {
            "note": '"keep me"',
            "tag_uid": encode_extra("A1B2"),
            "active_tray": encode_extra(TRAY),
        }

    async def test_assign_with_cached_spools_skips_listing(self):
        cached = [spool(3)]
        fake = FakeSpoolman(cached)
        client = make_client(fake)

        await client.assign_spool_to_tray(3, TRAY, cached_spools=cached)

        assert [m for m, p, _ in fake.requests] == ["PATCH"]

    async def test_reassigning_same_spool_is_single_patch(self):
        fake = FakeSpoolman([spool(3, tray=TRAY)])
        client = make_client(fake)

        await client.assign_spool_to_tray(3, TRAY)

        assert len(fake.mutations()) == 1

    async def test_clear_assignment(self):
        fake = FakeSpoolman([spool(4, tray=TRAY, tag="ABCD")])
        client = make_client(fake)

        await client.clear_assignment(4)

        assert decode_extra(fake.spools[4]["extra"]["active_tray"]) is None
        assert fake.spools[4]["extra"]["tag_uid"] == encode_extra("ABCD")

    async def test_ensure_extra_fields_creates_missing(self):
        fake = FakeSpoolman([])
        fake.fields.add("tag_uid")
        client = make_client(fake)

        assert await client.ensure_extra_fields() is True

        assert [(m, p) for m, p, _ in fake.mutations()] == [("POST", "/field/spool/active_tray")]
