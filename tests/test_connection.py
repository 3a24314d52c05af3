import asyncio

import pytest

from hubbridge.connection import Backoff, ConnectionState, HubConnection
from hubbridge.errors import (AuthenticationError, ConnectionLostError, RequestFailedError,
                              TransientConnectionError)

from conftest import TOKEN, FakeHub, until

WS_URL = "ws://hub.test:8123/api/websocket"


def make_connection(hub, sleep, events=None, **kwargs):
    sink = events if events is not None else []
    return HubConnection(WS_URL, TOKEN, sink.append, connect=hub.connect, sleep=sleep, **kwargs)


def test_backoff_sequence():
    b = Backoff(base=1, cap=30, max_attempts=5)
    delays = [b.next_delay() for _ in range(6)]
    assert delays[:5] == [2, 4, 8, 16, 30]
    assert delays[5] == 30
    assert b.exhausted
    b.reset()
    assert b.attempt == 0 and b.next_delay() == 2


async def test_handshake_then_subscribe(hub, fake_sleep):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    try:
        assert conn.state is ConnectionState.CONNECTED
        sent = hub.socket.sent
        assert sent[0] == {"type": "auth", "access_token": TOKEN}
        assert sent[1] == {"id": 1, "type": "subscribe_events", "event_type": "state_changed"}
        assert len(conn.correlator) == 0
    finally:
        await conn.stop()
    assert conn.state is ConnectionState.DISCONNECTED


async def test_events_are_forwarded_in_order(hub, fake_sleep):
    events = []
    conn = make_connection(hub, fake_sleep, events)
    await conn.start()
    for n in range(3):
        hub.state_changed("light.a", {"state": str(n)})
    await until(lambda: len(events) == 3)
    assert [e["event"]["data"]["new_state"]["state"] for e in events] == ["0", "1", "2"]
    await conn.stop()


async def test_garbage_frames_are_dropped(hub, fake_sleep):
    events = []
    conn = make_connection(hub, fake_sleep, events)
    await conn.start()
    hub.socket.inbound.put_nowait("not json")
    hub.socket.inbound.put_nowait("[1, 2]")
    hub.state_changed("light.a", {"state": "on"})
    await until(lambda: len(events) == 1)
    assert conn.connected
    await conn.stop()


async def test_request_is_correlated(hub, fake_sleep):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    task = asyncio.create_task(conn.request({"type": "get_config"}))
    await until(lambda: len(hub.socket.sent) == 3)
    request = hub.socket.sent[-1]
    assert request == {"type": "get_config", "id": 2}
    hub.socket.push({"id": 2, "type": "result", "success": True, "result": {"version": "2024.5"}})
    assert await task == {"version": "2024.5"}
    await conn.stop()


async def test_failed_request_raises(hub, fake_sleep):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    task = asyncio.create_task(conn.request({"type": "call_service"}))
    await until(lambda: len(conn.correlator) == 1)
    hub.socket.push({"id": 2, "type": "result", "success": False,
                     "error": {"code": "invalid_format", "message": "bad"}})
    with pytest.raises(RequestFailedError):
        await task
    await conn.stop()


async def test_request_timeout_discards_pending(hub, fake_sleep):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    with pytest.raises(asyncio.TimeoutError):
        await conn.request({"type": "ping"}, timeout=0.01)
    assert len(conn.correlator) == 0
    await conn.stop()


async def test_request_requires_connection(hub, fake_sleep):
    conn = make_connection(hub, fake_sleep)
    with pytest.raises(TransientConnectionError):
        await conn.request({"type": "ping"})


async def test_drop_fails_pending_and_reconnect_restarts_ids(hub, fake_sleep, sleeps):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    first = hub.socket

    r1 = asyncio.create_task(conn.request({"type": "get_states"}))
    r2 = asyncio.create_task(conn.request({"type": "get_services"}))
    await until(lambda: len(conn.correlator) == 2)
    assert first.ids() == [1, 2, 3]

    first.drop()
    for task in (r1, r2):
        with pytest.raises(ConnectionLostError):
            await task

    await until(lambda: len(hub.sockets) == 2 and conn.connected)
    second = hub.socket
    assert second.sent[0]["type"] == "auth"
    assert second.sent[1] == {"id": 1, "type": "subscribe_events", "event_type": "state_changed"}
    assert sleeps == [2]

    task = asyncio.create_task(conn.request({"type": "ping"}))
    await until(lambda: len(second.sent) == 3)
    assert second.ids() == [1, 2]
    second.push({"id": 2, "type": "result", "success": True, "result": "pong"})
    assert await task == "pong"
    await conn.stop()


async def test_successful_session_resets_backoff(hub, fake_sleep, sleeps):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    hub.socket.drop()
    await until(lambda: len(hub.sockets) == 2 and conn.connected)
    hub.socket.drop()
    await until(lambda: len(hub.sockets) == 3 and conn.connected)
    assert sleeps == [2, 2]
    assert conn.reconnect_attempt == 0
    await conn.stop()


async def test_auth_invalid_is_terminal(fake_sleep, sleeps):
    hub = FakeHub(auth="invalid")
    conn = make_connection(hub, fake_sleep)
    with pytest.raises(AuthenticationError):
        await conn.start()
    for _ in range(20):
        await asyncio.sleep(0)
    assert conn.state is ConnectionState.DISCONNECTED
    assert len(hub.sockets) == 1
    assert hub.socket.closed
    assert sleeps == []
    await conn.stop()


async def test_auth_timeout_is_transient(fake_sleep, sleeps):
    hub = FakeHub(auth="silent")
    conn = make_connection(hub, fake_sleep, auth_timeout=0.05)
    with pytest.raises(TransientConnectionError) as exc:
        await conn.start()
    assert not isinstance(exc.value, AuthenticationError)
    assert hub.sockets[0].closed
    await until(lambda: sleeps == [2] and len(hub.sockets) == 2, turns=5000)
    await conn.stop()


async def test_first_failure_keeps_retrying_in_background(fake_sleep, sleeps):
    hub = FakeHub()
    hub.connect_failures = 2
    conn = make_connection(hub, fake_sleep)
    with pytest.raises(TransientConnectionError):
        await conn.start()
    await until(lambda: conn.connected)
    assert sleeps == [2, 4]
    assert len(hub.urls) == 3
    await conn.stop()


async def test_gives_up_after_max_attempts(fake_sleep, sleeps):
    hub = FakeHub()
    hub.connect_failures = 100
    conn = make_connection(hub, fake_sleep, backoff=Backoff(1, 30, 5))
    with pytest.raises(TransientConnectionError):
        await conn.start()
    await until(lambda: conn.gave_up)
    assert sleeps == [2, 4, 8, 16, 30]
    assert len(hub.urls) == 6
    assert conn.state is ConnectionState.DISCONNECTED
    await conn.stop()


async def test_stop_fails_pending_and_closes(hub, fake_sleep, sleeps):
    conn = make_connection(hub, fake_sleep)
    await conn.start()
    task = asyncio.create_task(conn.request({"type": "ping"}))
    await until(lambda: len(conn.correlator) == 1)
    await conn.stop()
    with pytest.raises(ConnectionLostError):
        await task
    assert hub.socket.closed
    assert conn.state is ConnectionState.DISCONNECTED
    for _ in range(10):
        await asyncio.sleep(0)
    assert len(hub.sockets) == 1 and sleeps == []


async def test_stop_while_authenticating_releases_start(fake_sleep, sleeps):
    hub = FakeHub(auth="silent")
    conn = make_connection(hub, fake_sleep, auth_timeout=30)
    opening = asyncio.create_task(conn.start())
    await until(lambda: hub.sockets and hub.socket.sent)
    assert conn.state is ConnectionState.AUTHENTICATING

    await conn.stop()
    with pytest.raises(ConnectionLostError):
        await asyncio.wait_for(opening, 1)
    assert hub.socket.closed
    assert conn.state is ConnectionState.DISCONNECTED
    assert sleeps == []


async def test_crashing_event_handler_reconnects(hub, fake_sleep, sleeps):
    def broken(message):
        raise AttributeError("'str' object has no attribute 'get'")

    conn = HubConnection(WS_URL, TOKEN, broken, connect=hub.connect, sleep=fake_sleep)
    await conn.start()
    first = hub.socket
    hub.state_changed("light.a", {"state": "on"})
    await until(lambda: len(hub.sockets) == 2 and conn.connected)
    assert first.closed
    assert sleeps == [2]
    await conn.stop()
