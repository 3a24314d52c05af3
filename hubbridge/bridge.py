"""Application-facing bridge to a Home Assistant hub.

One ``HubBridge`` is built by the composition root (``main.create_app``)
and handed to whoever needs it; tests build their own. It stitches the
REST transport, the supervised duplex connection, the entity catalog and
the command dispatcher together and exposes them as plain methods whose
outcomes are ``Result`` values.
"""
import asyncio, logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import websockets
from pydantic import BaseModel, ConfigDict, field_validator

from .connection import Backoff, ConnectionState, HubConnection
from .db import AuditLog
from .devices import Device, in_area
from .dispatcher import CommandDispatcher
from .entities import Entity
from .errors import (AuthenticationError, ConfigurationError, HttpError, NotConfiguredError,
                     TransientConnectionError)
from .ha_client import HubClient
from .mappings import DeviceType
from .results import ErrorKind, Fail, Ok, Result
from .settings import Settings, settings as default_settings
from .state import Catalog

log = logging.getLogger("bridge")

NOT_CONFIGURED = Fail(
    ErrorKind.NOT_CONFIGURED,
    "Home Assistant is not configured. Please provide your HA URL and access token first.",
)


class HubConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    token: str
    auto_discovery: bool = True

    @field_validator("url")
    @classmethod
    def _clean_url(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return v

    @field_validator("token")
    @classmethod
    def _require_token(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("token must not be empty")
        return v.strip()


class BridgeStatus(BaseModel):
    configured: bool
    connected: bool
    state: ConnectionState
    entity_count: int
    reconnect_attempt: int = 0
    gave_up: bool = False


class HubBridge:
    def __init__(
        self,
        settings: Settings = default_settings,
        *,
        audit: Optional[AuditLog] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect: Callable[..., Any] = websockets.connect,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.settings = settings
        self.audit = audit
        self.catalog = Catalog()
        self._transport = transport
        self._connect = connect
        self._sleep = sleep

        self._config: Optional[HubConfig] = None
        self._client: Optional[HubClient] = None
        self._connection: Optional[HubConnection] = None
        self._dispatcher: Optional[CommandDispatcher] = None

    @property
    def config(self) -> Optional[HubConfig]:
        return self._config

    @property
    def connection(self) -> Optional[HubConnection]:
        return self._connection

    # -- configuration -----------------------------------------------------

    async def configure(self, config: HubConfig) -> Result:
        """Probe the hub, load the snapshot, then open the live connection.

        Reconfiguring tears the previous connection and cache down first.
        """
        if self._config is not None:
            await self.disconnect()

        client = HubClient(config.url, config.token, timeout=self.settings.HTTP_TIMEOUT,
                           transport=self._transport)
        try:
            status = await client.status()
            if not isinstance(status, dict) or not status.get("message"):
                raise ConfigurationError("Invalid Home Assistant URL or not running")
            states = await client.states()
            if not isinstance(states, list):
                raise ConfigurationError("Unexpected /api/states payload")
        except HttpError as e:
            await client.aclose()
            kind = ErrorKind.AUTHENTICATION if e.status in (401, 403) else ErrorKind.CONFIGURATION
            log.error("Configuration failed: %s", e)
            return Fail(kind, str(e))
        except (ConfigurationError, httpx.HTTPError, ValueError) as e:
            await client.aclose()
            log.error("Configuration failed: %s", e)
            return Fail(ErrorKind.CONFIGURATION, str(e) or "Connection failed")

        self._config = config
        self._client = client
        self.catalog.replace_all(states)
        if config.auto_discovery:
            await self._load_areas(client)
        self._dispatcher = CommandDispatcher(self.catalog, client, self.audit)

        s = self.settings
        self._connection = HubConnection(
            client.websocket_url(), config.token, self.catalog.handle_event,
            backoff=Backoff(s.RECONNECT_BASE, s.RECONNECT_CAP, s.RECONNECT_MAX_ATTEMPTS),
            auth_timeout=s.AUTH_TIMEOUT,
            request_timeout=s.REQUEST_TIMEOUT,
            connect=self._connect,
            sleep=self._sleep,
        )
        connection = self._connection
        try:
            await connection.start()
        except AuthenticationError as e:
            await self.disconnect()
            return Fail(ErrorKind.AUTHENTICATION, str(e))
        except TransientConnectionError as e:
            if self._connection is not connection:
                # disconnect() ran while the connection was still opening
                return Fail(ErrorKind.TRANSIENT, f"Disconnected before the hub connection opened: {e}")
            log.warning("Live updates unavailable (%s); reconnecting in the background", e)

        count = len(self.catalog)
        log.info("Connected! %d entities loaded", count)
        return Ok(f"Connected to Home Assistant, {count} entities loaded.", count)

    async def _load_areas(self, client: HubClient):
        # best effort: without registries area lookups only match on names
        try:
            entity_registry = await client.entity_registry()
        except (HttpError, httpx.HTTPError, ValueError) as e:
            log.warning("Could not load areas: %s", e)
            self.catalog.clear_registries()
            return
        try:
            area_registry = await client.area_registry()
        except (HttpError, httpx.HTTPError, ValueError) as e:
            log.warning("Could not load area registry: %s", e)
            area_registry = []
        self.catalog.load_registries(
            entity_registry if isinstance(entity_registry, list) else [],
            area_registry if isinstance(area_registry, list) else [],
        )

    def is_configured(self) -> bool:
        return self._config is not None and self._connection is not None and self._connection.connected

    def get_status(self) -> BridgeStatus:
        conn = self._connection
        return BridgeStatus(
            configured=self._config is not None,
            connected=conn is not None and conn.connected,
            state=conn.state if conn else ConnectionState.DISCONNECTED,
            entity_count=len(self.catalog),
            reconnect_attempt=conn.reconnect_attempt if conn else 0,
            gave_up=conn.gave_up if conn else False,
        )

    async def disconnect(self):
        connection, self._connection = self._connection, None
        if connection is not None:
            await connection.stop()
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
        self._dispatcher = None
        self._config = None
        self.catalog.clear()

    # -- devices -----------------------------------------------------------

    def get_all_devices(self) -> List[Device]:
        return self.catalog.devices()

    def get_devices_by_type(self, type_: DeviceType) -> List[Device]:
        return [d for d in self.catalog.devices() if d.type == type_]

    def get_devices_by_area(self, area: str) -> List[Device]:
        return [d for d in self.catalog.devices() if in_area(d, area)]

    def find_device(self, query: str) -> Optional[Device]:
        if self._dispatcher is None:
            return None
        return self._dispatcher.find(query)

    def get_state(self, entity_id: str) -> Optional[Entity]:
        return self.catalog.get(entity_id)

    def on_state_change(self, listener: Callable[[Device], None]) -> Callable[[], None]:
        return self.catalog.changes.subscribe(listener)

    # -- commands ----------------------------------------------------------

    async def turn_on(self, target: str, brightness: Optional[int] = None) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.turn_on(target, brightness)

    async def turn_off(self, target: str) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.turn_off(target)

    async def toggle(self, target: str) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.toggle(target)

    async def set_brightness(self, target: str, brightness: int) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.set_brightness(target, brightness)

    async def set_temperature(self, target: str, temperature: float) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.set_temperature(target, temperature)

    async def control_area(self, area: str, action: str, brightness: Optional[int] = None) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.control_area(area, action, brightness)

    async def call_service(self, domain: str, service: str, data: Optional[Dict[str, Any]] = None,
                           entity_id: Optional[str] = None) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return await self._dispatcher.call_service(domain, service, data, entity_id)

    def describe(self, target: str) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return self._dispatcher.describe(target)

    def summarize(self) -> Result:
        if self._dispatcher is None:
            return NOT_CONFIGURED
        return self._dispatcher.summarize()

    async def request(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Any:
        """Raw correlated request over the live connection, e.g. ``{"type": "get_config"}``."""
        if self._connection is None:
            raise NotConfiguredError()
        return await self._connection.request(payload, timeout)
