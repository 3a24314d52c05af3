import logging
from typing import Any, Dict, Iterator, List, Optional
from pydantic import ValidationError
from .devices import Device, to_device
from .entities import Entity
from .realtime import Channel

log = logging.getLogger("state")

class Catalog:
    """Local mirror of the hub's entities, kept current by state_changed events.

    This is the only writer of the entity cache. Updates are applied
    synchronously on the event loop in arrival order, so readers never
    see half of an entity.
    """

    def __init__(self):
        self._entities: Dict[str, Entity] = {}
        self._entity_area: Dict[str, str] = {}   # entity_id -> area_id
        self._area_names: Dict[str, str] = {}    # area_id -> name
        self.changes: Channel[Device] = Channel("state_changed")

    def __len__(self):
        return len(self._entities)

    def __contains__(self, entity_id: str):
        return entity_id in self._entities

    def get(self, entity_id: str) -> Optional[Entity]:
        return self._entities.get(entity_id)

    def entities(self) -> Iterator[Entity]:
        return iter(list(self._entities.values()))

    def area_of(self, entity_id: str) -> Optional[str]:
        area_id = self._entity_area.get(entity_id)
        if area_id is None:
            return None
        return self._area_names.get(area_id)

    def device(self, entity: Entity) -> Optional[Device]:
        return to_device(entity, self.area_of(entity.entity_id))

    def devices(self) -> List[Device]:
        out = []
        for ent in self.entities():
            device = self.device(ent)
            if device is not None:
                out.append(device)
        return out

    def replace_all(self, states: List[Dict[str, Any]]):
        entities: Dict[str, Entity] = {}
        for st in states:
            try:
                ent = Entity.model_validate(st)
            except ValidationError as e:
                label = st.get("entity_id") if isinstance(st, dict) else st
                log.warning("Skipping malformed entity %r: %s", label, e)
                continue
            entities[ent.entity_id] = ent
        self._entities = entities
        log.info("Snapshot loaded: %d entities", len(entities))

    def load_registries(self, entity_registry: List[Dict[str, Any]], area_registry: List[Dict[str, Any]]):
        self._area_names = {a["area_id"]: a.get("name") or a["area_id"]
                            for a in area_registry if isinstance(a, dict) and a.get("area_id")}
        self._entity_area = {e["entity_id"]: e["area_id"]
                             for e in entity_registry if isinstance(e, dict) and e.get("entity_id") and e.get("area_id")}
        log.info("Registries loaded: %d areas, %d entity bindings",
                 len(self._area_names), len(self._entity_area))

    def clear_registries(self):
        self._entity_area = {}
        self._area_names = {}

    def clear(self):
        self._entities = {}
        self.clear_registries()

    def apply(self, entity_id: str, new_state: Optional[Dict[str, Any]]) -> Optional[Entity]:
        """Insert or wholesale-replace one entity; ``None`` means it was removed on the hub."""
        if new_state is None:
            if self._entities.pop(entity_id, None) is not None:
                log.debug("Entity removed: %s", entity_id)
            return None
        if not isinstance(new_state, dict):
            raise ValueError(f"state of {entity_id} is not an object: {new_state!r}")
        ent = Entity.model_validate({**new_state, "entity_id": entity_id})
        self._entities[entity_id] = ent
        return ent

    def handle_event(self, message: Dict[str, Any]):
        event = message.get("event")
        if not isinstance(event, dict):
            log.warning("Dropping event frame without an event object: %r", message)
            return
        if event.get("event_type") != "state_changed":
            log.debug("Ignoring event %r", event.get("event_type"))
            return
        data = event.get("data")
        if not isinstance(data, dict):
            log.warning("Dropping state_changed without a data object: %r", data)
            return
        entity_id = data.get("entity_id")
        if not isinstance(entity_id, str) or not entity_id:
            return
        try:
            ent = self.apply(entity_id, data.get("new_state"))
        except ValueError as e:
            log.warning("Dropping malformed state for %s: %s", entity_id, e)
            return
        if ent is None:
            return
        device = self.device(ent)
        if device is not None:
            self.changes.publish(device)
