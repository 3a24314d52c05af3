# Fixed domain tables used to project hub entities into assistant devices.
from typing import Dict, FrozenSet, Literal

DeviceType = Literal[
    "light", "switch", "climate", "media", "cover", "lock",
    "sensor", "binary_sensor", "camera", "vacuum", "fan", "other",
]

DOMAIN_DEVICE_TYPE: Dict[str, DeviceType] = {
    "light": "light",
    "switch": "switch",
    "climate": "climate",
    "media_player": "media",
    "cover": "cover",
    "lock": "lock",
    "sensor": "sensor",
    "binary_sensor": "binary_sensor",
    "camera": "camera",
    "vacuum": "vacuum",
    "fan": "fan",
}

# internal/system entities, never exposed as devices
EXCLUDED_DOMAINS: FrozenSet[str] = frozenset({
    "automation", "script", "scene",
    "input_boolean", "input_number", "input_select", "input_text", "input_datetime",
    "timer", "counter", "persistent_notification",
    "zone", "person", "device_tracker",
    "sun", "weather", "update",
})

ACTIVE_STATES: FrozenSet[str] = frozenset({"on", "playing", "open", "unlocked", "home"})

# what controlArea is allowed to batch
AREA_CONTROLLABLE: FrozenSet[str] = frozenset({"light", "switch"})

AREA_ACTIONS: Dict[str, str] = {"on": "turn_on", "off": "turn_off"}
