"""Lifetime of the duplex connection to the hub.

``HubConnection`` is the only owner of the websocket and the only writer
of ``ConnectionState``. One supervisor task runs sessions back to back:

    connecting -> authenticating -> connected -> (close/error) -> disconnected
        ^                                                              |
        +------------------------ backoff delay ----------------------+

Every session repeats the full handshake and re-sends the state_changed
subscription; nothing is assumed to survive on the hub side. A rejected
token ends supervision for good, since retrying the same credential cannot help.
A bare reconnect does not refetch the entity snapshot; entities that
changed while we were away stay stale until their next event.
"""
import asyncio, json, logging
from contextlib import AsyncExitStack, suppress
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

import websockets
from websockets.exceptions import WebSocketException

from .correlator import PendingRequest, RequestCorrelator
from .errors import AuthenticationError, ConnectionLostError, TransientConnectionError
from .handshake import Handshake

log = logging.getLogger("ha")

SUBSCRIBE_STATE_CHANGED = {"type": "subscribe_events", "event_type": "state_changed"}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"


class Backoff:
    """delay = min(base * 2**attempt, cap), attempt counted from the first retry."""

    def __init__(self, base: float = 1, cap: float = 30, max_attempts: int = 5):
        self.base = base
        self.cap = cap
        self.max_attempts = max_attempts
        self.attempt = 0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    def next_delay(self) -> float:
        self.attempt += 1
        return min(self.base * 2 ** self.attempt, self.cap)

    def reset(self):
        self.attempt = 0


class HubConnection:
    def __init__(
        self,
        url: str,
        token: str,
        on_event: Callable[[Dict[str, Any]], None],
        *,
        backoff: Optional[Backoff] = None,
        auth_timeout: float = 10,
        request_timeout: Optional[float] = None,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._url = url
        self._token = token
        self._on_event = on_event
        self._backoff = backoff or Backoff()
        self._auth_timeout = auth_timeout
        self._request_timeout = request_timeout
        self._connect = connect
        self._sleep = sleep

        self.state = ConnectionState.DISCONNECTED
        self.correlator = RequestCorrelator()
        self.gave_up = False
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._opened: Optional[asyncio.Future] = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def reconnect_attempt(self) -> int:
        return self._backoff.attempt

    def _set_state(self, state: ConnectionState):
        if state is not self.state:
            log.info("Connection %s -> %s", self.state.value, state.value)
            self.state = state

    # -- lifecycle ---------------------------------------------------------

    async def start(self):
        """Run the supervisor and wait for the first session to open.

        Raises ``AuthenticationError`` (supervision stopped) or
        ``TransientConnectionError`` (supervision keeps retrying).
        """
        if self._task is not None and not self._task.done():
            return
        self.gave_up = False
        self._backoff.reset()
        self._opened = asyncio.get_running_loop().create_future()
        self._task = asyncio.create_task(self._supervise())
        await asyncio.shield(self._opened)

    async def stop(self):
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        self._finish_opening(ConnectionLostError("connection closed"))
        self.correlator.fail_all(ConnectionLostError("connection closed"))
        self._ws = None
        self._set_state(ConnectionState.DISCONNECTED)

    def _finish_opening(self, exc: Optional[BaseException] = None):
        if self._opened is None or self._opened.done():
            return
        if exc is None:
            self._opened.set_result(None)
        else:
            self._opened.set_exception(exc)

    async def _supervise(self):
        while True:
            try:
                await self._session()
            except AuthenticationError as e:
                log.error("Hub rejected the access token: %s; not reconnecting", e)
                self._set_state(ConnectionState.DISCONNECTED)
                self._finish_opening(e)
                return
            except (TransientConnectionError, WebSocketException, OSError) as e:
                log.warning("Hub connection lost: %s", e)
                if not isinstance(e, TransientConnectionError):
                    e = TransientConnectionError(str(e) or type(e).__name__)
                self._finish_opening(e)
            except Exception as e:
                log.exception("Hub session crashed; reconnecting")
                self._finish_opening(TransientConnectionError(f"session crashed: {e!r}"))
            finally:
                self._ws = None
                self.correlator.fail_all(ConnectionLostError())

            self._set_state(ConnectionState.DISCONNECTED)
            if self._backoff.exhausted:
                log.error("Giving up after %d reconnect attempts", self._backoff.attempt)
                self.gave_up = True
                return
            delay = self._backoff.next_delay()
            log.warning("Reconnecting in %ss (attempt %d/%d)", delay,
                        self._backoff.attempt, self._backoff.max_attempts)
            await self._sleep(delay)

    async def _session(self):
        self._set_state(ConnectionState.CONNECTING)
        async with AsyncExitStack() as stack:
            try:
                ws = await asyncio.wait_for(self._open(stack), timeout=self._auth_timeout)
            except asyncio.TimeoutError as e:
                raise TransientConnectionError(
                    f"not authenticated within {self._auth_timeout}s") from e

            self.correlator.reset(ConnectionLostError())
            self._set_state(ConnectionState.CONNECTED)
            self._backoff.reset()

            subscription = await self._send_request(SUBSCRIBE_STATE_CHANGED)
            subscription.future.add_done_callback(_log_subscription)
            self._finish_opening()

            async for raw in ws:
                self._dispatch(raw)
        raise TransientConnectionError("connection closed by hub")

    async def _open(self, stack: AsyncExitStack):
        ws = await stack.enter_async_context(self._connect(self._url))
        self._ws = ws
        handshake = Handshake(self._token)
        while not handshake.authenticated:
            message = _decode(await ws.recv())
            if message is None:
                continue
            try:
                reply = handshake.receive(message)
            except AuthenticationError:
                await ws.close()
                raise
            if reply is not None:
                self._set_state(ConnectionState.AUTHENTICATING)
                await ws.send(json.dumps(reply))
        return ws

    # -- traffic -----------------------------------------------------------

    def _dispatch(self, raw):
        message = _decode(raw)
        if message is None:
            return
        kind = message.get("type")
        if kind == "result":
            self.correlator.resolve(message)
        elif kind == "event":
            self._on_event(message)
        else:
            log.debug("Unhandled message type %r", kind)

    async def _send_request(self, payload: Dict[str, Any]) -> PendingRequest:
        if self._ws is None or not self.connected:
            raise TransientConnectionError("not connected to Home Assistant")
        pending = self.correlator.register(payload.get("type", ""))
        try:
            await self._ws.send(json.dumps({**payload, "id": pending.id}))
        except (WebSocketException, OSError) as e:
            self.correlator.discard(pending.id)
            raise ConnectionLostError(str(e) or "connection lost") from e
        return pending

    async def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """Send a correlated request and wait for its result."""
        pending = await self._send_request(payload)
        try:
            return await asyncio.wait_for(pending.future, timeout if timeout is not None else self._request_timeout)
        except asyncio.TimeoutError:
            self.correlator.discard(pending.id)
            raise


def _decode(raw) -> Optional[Dict[str, Any]]:
    try:
        message = json.loads(raw)
    except (TypeError, ValueError):
        log.warning("Dropping unparseable frame: %r", raw)
        return None
    if not isinstance(message, dict):
        log.debug("Dropping non-object frame: %r", raw)
        return None
    return message


def _log_subscription(future: asyncio.Future):
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        log.warning("state_changed subscription failed: %s", exc)
    else:
        log.info("Subscribed to state_changed events")
