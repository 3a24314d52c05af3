import asyncio, json
from typing import Any, Dict, List

import httpx
import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from hubbridge.bridge import HubBridge, HubConfig
from hubbridge.db import AuditLog
from hubbridge.settings import Settings

URL = "http://hub.test:8123"
TOKEN = "long-lived-token"

_CLOSED = object()
_DROPPED = object()


def state(entity_id: str, value: str, **attributes) -> Dict[str, Any]:
    return {
        "entity_id": entity_id,
        "state": value,
        "attributes": attributes,
        "last_changed": "2024-05-01T10:00:00+00:00",
        "last_updated": "2024-05-01T10:00:00+00:00",
        "context": {"id": "01HX", "parent_id": None, "user_id": None},
    }


def snapshot() -> List[Dict[str, Any]]:
    return [
        state("light.kitchen", "off", friendly_name="Kitchen Light", supported_features=40),
        state("switch.fan", "on", friendly_name="Fan"),
    ]


class FakeRest:
    """In-process stand-in for the hub's REST API."""

    def __init__(self, states):
        self.states = states
        self.entity_registry = [
            {"entity_id": "light.kitchen", "area_id": "kitchen"},
            {"entity_id": "switch.fan", "area_id": "living_room"},
        ]
        self.area_registry = [
            {"area_id": "kitchen", "name": "Kitchen"},
            {"area_id": "living_room", "name": "Living Room"},
        ]
        self.fail: Dict[str, int] = {}
        self.calls: List[tuple] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == f"Bearer {TOKEN}"
        path = request.url.path
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, body))

        if path in self.fail:
            return httpx.Response(self.fail[path], text="boom")
        if path == "/api/":
            return httpx.Response(200, json={"message": "API running."})
        if path == "/api/states":
            return httpx.Response(200, json=self.states)
        if path == "/api/config/entity_registry/list":
            return httpx.Response(200, json=self.entity_registry)
        if path == "/api/config/area_registry/list":
            return httpx.Response(200, json=self.area_registry)
        if path.startswith("/api/services/"):
            return httpx.Response(200, json=[])
        return httpx.Response(404, text="not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def service_calls(self):
        return [(path, body) for method, path, body in self.calls if path.startswith("/api/services/")]


class FakeWebSocket:
    def __init__(self, hub):
        self.hub = hub
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[Dict[str, Any]] = []
        self.closed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()
        return False

    def push(self, message: Dict[str, Any]):
        self.inbound.put_nowait(json.dumps(message))

    def drop(self):
        self.closed = True
        self.inbound.put_nowait(_DROPPED)

    async def send(self, raw: str):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        message = json.loads(raw)
        self.sent.append(message)
        self.hub.on_message(self, message)

    async def recv(self):
        item = await self.inbound.get()
        if item is _CLOSED:
            self.inbound.put_nowait(item)
            raise ConnectionClosedOK(None, None)
        if item is _DROPPED:
            self.inbound.put_nowait(item)
            raise ConnectionClosedError(None, None)
        return item

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return await self.recv()
        except ConnectionClosedOK:
            raise StopAsyncIteration

    async def close(self):
        if not self.closed:
            self.closed = True
            self.inbound.put_nowait(_CLOSED)

    def ids(self):
        return [m["id"] for m in self.sent if "id" in m]


class FakeHub:
    """Scripted hub websocket; ``connect`` replaces ``websockets.connect``."""

    def __init__(self, auth: str = "ok"):
        self.auth = auth
        self.connect_failures = 0
        self.sockets: List[FakeWebSocket] = []
        self.urls: List[str] = []

    @property
    def socket(self) -> FakeWebSocket:
        return self.sockets[-1]

    def connect(self, url: str) -> FakeWebSocket:
        self.urls.append(url)
        if self.connect_failures:
            self.connect_failures -= 1
            raise OSError("connection refused")
        ws = FakeWebSocket(self)
        self.sockets.append(ws)
        ws.push({"type": "auth_required", "ha_version": "2024.5.0"})
        return ws

    def on_message(self, ws: FakeWebSocket, message: Dict[str, Any]):
        kind = message.get("type")
        if kind == "auth":
            if self.auth == "ok" and message.get("access_token") == TOKEN:
                ws.push({"type": "auth_ok", "ha_version": "2024.5.0"})
            elif self.auth != "silent":
                ws.push({"type": "auth_invalid", "message": "Invalid access token or password"})
        elif kind == "subscribe_events":
            ws.push({"id": message["id"], "type": "result", "success": True, "result": None})

    def state_changed(self, entity_id: str, new_state, old_state=None):
        self.socket.push({
            "id": 1,
            "type": "event",
            "event": {
                "event_type": "state_changed",
                "data": {"entity_id": entity_id, "new_state": new_state, "old_state": old_state},
            },
        })


async def until(predicate, turns: int = 500):
    for _ in range(turns):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture
def rest():
    return FakeRest(snapshot())


@pytest.fixture
def hub():
    return FakeHub()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def sleep(delay):
        sleeps.append(delay)
        await asyncio.sleep(0)
    return sleep


@pytest.fixture
def test_settings():
    return Settings(_env_file=None, HA_TOKEN=None, DB_URL="sqlite://", AUTH_TIMEOUT=0.5)


@pytest.fixture
def audit():
    log = AuditLog("sqlite://")
    log.init()
    yield log
    log.dispose()


@pytest.fixture
def config():
    return HubConfig(url=URL + "/", token=TOKEN)


@pytest.fixture
async def bridge(test_settings, audit, rest, hub, fake_sleep):
    b = HubBridge(test_settings, audit=audit, transport=rest.transport, connect=hub.connect, sleep=fake_sleep)
    yield b
    await b.disconnect()


@pytest.fixture
async def configured(bridge, config):
    result = await bridge.configure(config)
    assert result.ok, result.text
    return bridge
