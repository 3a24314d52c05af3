import math
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field
from .entities import Entity
from .mappings import ACTIVE_STATES, DOMAIN_DEVICE_TYPE, EXCLUDED_DOMAINS, DeviceType

class Device(BaseModel):
    """Read-only assistant view of one hub entity, recomputed on every read."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: DeviceType
    area: Optional[str] = None
    state: str
    is_on: bool
    brightness: Optional[int] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    entity_id: str
    source: str = "home_assistant"

def _half_up(value: float) -> int:
    return int(math.floor(value + 0.5))

def raw_to_percent(raw: float) -> int:
    # hub brightness is 0-255
    return _half_up(raw / 2.55)

def percent_to_raw(pct: float) -> int:
    return _half_up(pct * 2.55)

def device_type(domain: str) -> DeviceType:
    return DOMAIN_DEVICE_TYPE.get(domain, "other")

def is_device_domain(domain: str) -> bool:
    return domain not in EXCLUDED_DOMAINS

def to_device(entity: Entity, area: Optional[str] = None) -> Optional[Device]:
    domain = entity.domain
    if not is_device_domain(domain):
        return None

    raw = getattr(entity.typed_attributes(), "brightness", None)
    brightness = None
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        brightness = raw_to_percent(raw)

    return Device(
        id=entity.entity_id,
        name=entity.friendly_name or entity.entity_id,
        type=device_type(domain),
        area=area,
        state=entity.state,
        is_on=entity.state.lower() in ACTIVE_STATES,
        brightness=brightness,
        attributes=dict(entity.attributes),
        entity_id=entity.entity_id,
    )

def in_area(device: Device, query: str) -> bool:
    """Area or display name contains ``query``, case-insensitively."""
    q = query.lower()
    return q in (device.area or "").lower() or q in device.name.lower()
