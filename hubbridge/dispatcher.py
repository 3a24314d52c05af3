import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from .db import AuditLog
from .devices import Device, in_area
from .errors import ServiceInvocationError
from .ha_client import HubClient
from .mappings import AREA_ACTIONS, AREA_CONTROLLABLE
from .results import ErrorKind, Fail, Ok, Result, UserFacingMessage, not_found
from .state import Catalog

log = logging.getLogger("bridge")

BRIGHTNESS_RANGE = "Please specify a brightness level between 0 and 100."


class CommandDispatcher:
    """Turns assistant intents into hub service calls.

    Devices are resolved by exact entity id first, then by the first
    display name (in snapshot order) containing the query. Ambiguous names
    are not ranked: "lamp" controls whichever lamp the hub listed first.

    Commands are at-most-once: a failed service call comes back as a
    ``Fail`` and is never retried here.
    """

    def __init__(self, catalog: Catalog, client: HubClient,
                 audit: Optional[AuditLog] = None, actor: str = "assistant"):
        self.catalog = catalog
        self.client = client
        self.audit = audit
        self.actor = actor

    # -- resolution --------------------------------------------------------

    def find(self, query: str) -> Optional[Device]:
        q = query.lower()
        for ent in self.catalog.entities():
            if q in (ent.friendly_name or ent.entity_id).lower():
                device = self.catalog.device(ent)
                if device is not None:
                    return device
        return None

    def resolve(self, query: str) -> Optional[Device]:
        ent = self.catalog.get(query)
        if ent is not None:
            return self.catalog.device(ent)
        return self.find(query)

    def devices_in_area(self, area: str) -> List[Device]:
        return [d for d in self.catalog.devices() if in_area(d, area)]

    # -- invocation --------------------------------------------------------

    async def _invoke(self, domain: str, service: str, data: Dict[str, Any],
                      target_type: str = "entity", target_id: Optional[str] = None) -> Optional[Fail]:
        action = f"{domain}.{service}"
        target_id = target_id or _target_label(data.get("entity_id"))
        try:
            await self.client.call_service(domain, service, data)
        except ServiceInvocationError as e:
            log.warning("%s on %s failed: %s", action, target_id, e)
            self._record(action, target_type, target_id, data, f"http_{e.status}")
            return Fail(ErrorKind.SERVICE_INVOCATION, str(e))
        except httpx.HTTPError as e:
            log.warning("%s on %s could not reach the hub: %s", action, target_id, e)
            self._record(action, target_type, target_id, data, "transport_error")
            return Fail(ErrorKind.TRANSIENT, f"Could not reach Home Assistant: {e}")
        self._record(action, target_type, target_id, data, "ok")
        return None

    def _record(self, action, target_type, target_id, payload, outcome):
        if self.audit is not None:
            self.audit.record(self.actor, action, target_type, target_id, payload, outcome)

    async def call_service(self, domain: str, service: str, data: Optional[Dict[str, Any]] = None,
                           entity_id: Optional[Union[str, List[str]]] = None) -> Result:
        payload = dict(data or {})
        if entity_id:
            payload["entity_id"] = entity_id
        fail = await self._invoke(domain, service, payload)
        if fail:
            return fail
        return Ok(f"Called {domain}.{service}, Sir.")

    # -- controls ----------------------------------------------------------

    async def turn_on(self, target: str, brightness: Optional[int] = None) -> Result:
        if brightness is not None and not 0 <= brightness <= 100:
            return UserFacingMessage(BRIGHTNESS_RANGE)
        device = self.resolve(target)
        if device is None:
            return not_found(target)

        domain = device.entity_id.split(".", 1)[0]
        data: Dict[str, Any] = {"entity_id": device.entity_id}
        dimmed = brightness is not None and domain == "light"
        if dimmed:
            data["brightness_pct"] = brightness

        fail = await self._invoke(domain, "turn_on", data)
        if fail:
            return fail
        suffix = f" at {brightness}%" if dimmed else ""
        return Ok(f"{device.name} is now on{suffix}, Sir.", device.entity_id)

    async def turn_off(self, target: str) -> Result:
        device = self.resolve(target)
        if device is None:
            return not_found(target)
        domain = device.entity_id.split(".", 1)[0]
        fail = await self._invoke(domain, "turn_off", {"entity_id": device.entity_id})
        if fail:
            return fail
        return Ok(f"{device.name} is now off, Sir.", device.entity_id)

    async def toggle(self, target: str) -> Result:
        device = self.resolve(target)
        if device is None:
            return not_found(target)
        domain = device.entity_id.split(".", 1)[0]
        fail = await self._invoke(domain, "toggle", {"entity_id": device.entity_id})
        if fail:
            return fail
        return Ok(f"{device.name} toggled, Sir.", device.entity_id)

    async def set_brightness(self, target: str, brightness: int) -> Result:
        device = self.resolve(target)
        if device is None:
            return not_found(target)
        if device.type != "light":
            return UserFacingMessage(f"{device.name} doesn't support brightness control.")
        if not 0 <= brightness <= 100:
            return UserFacingMessage(BRIGHTNESS_RANGE)

        fail = await self._invoke("light", "turn_on",
                                  {"entity_id": device.entity_id, "brightness_pct": brightness})
        if fail:
            return fail
        return Ok(f"{device.name} set to {brightness}%, Sir.", device.entity_id)

    async def set_temperature(self, target: str, temperature: float) -> Result:
        device = self.resolve(target)
        if device is None:
            return not_found(target)
        if device.type != "climate":
            return UserFacingMessage(f"{device.name} isn't a thermostat.")
        fail = await self._invoke("climate", "set_temperature",
                                  {"entity_id": device.entity_id, "temperature": temperature})
        if fail:
            return fail
        return Ok(f"Temperature set to {temperature}° on {device.name}, Sir.", device.entity_id)

    async def control_area(self, area: str, action: str, brightness: Optional[int] = None) -> Result:
        service = AREA_ACTIONS.get(action)
        if service is None:
            return UserFacingMessage(f"I can only turn devices on or off, not \"{action}\".")
        if brightness is not None and not 0 <= brightness <= 100:
            return UserFacingMessage(BRIGHTNESS_RANGE)

        devices = [d for d in self.devices_in_area(area) if d.type in AREA_CONTROLLABLE]
        if not devices:
            return UserFacingMessage(f"I couldn't find any controllable devices in \"{area}\"")

        entity_ids = [d.entity_id for d in devices]
        data: Dict[str, Any] = {"entity_id": entity_ids}
        if brightness is not None and action == "on":
            data["brightness_pct"] = brightness

        fail = await self._invoke("homeassistant", service, data, target_type="area", target_id=area)
        if fail:
            return fail
        verb = "turned on" if action == "on" else "turned off"
        return Ok(f"{len(devices)} {verb} in {area}, Sir.", entity_ids)

    # -- queries -----------------------------------------------------------

    def describe(self, target: str) -> Result:
        device = self.resolve(target)
        if device is None:
            return not_found(target)
        text = f"{device.name} is currently {device.state}"
        if device.brightness is not None:
            text += f" at {device.brightness}% brightness"
        return Ok(text + ", Sir.", device)

    def summarize(self, per_type: int = 5) -> Result:
        devices = self.catalog.devices()
        if not devices:
            return UserFacingMessage("No devices found in Home Assistant.")

        by_type: Dict[str, List[str]] = {}
        for d in devices:
            by_type.setdefault(d.type, []).append(d.name)

        lines = [f"I found {len(devices)} devices in Home Assistant:", ""]
        for type_, names in by_type.items():
            line = f"{type_.replace('_', ' ').capitalize()}s: {', '.join(names[:per_type])}"
            if len(names) > per_type:
                line += f" and {len(names) - per_type} more"
            lines.append(line)
        return Ok("\n".join(lines), len(devices))


def _target_label(entity_id) -> str:
    if isinstance(entity_id, list):
        return ",".join(entity_id)
    return entity_id or ""
