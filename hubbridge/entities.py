"""Entity records as mirrored from the hub.

The hub's attribute bag is open-ended. Domains we read from get a typed
view; anything unmodelled stays reachable through ``extra="allow"``.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError

log = logging.getLogger("state")


class BaseAttributes(BaseModel):
    model_config = ConfigDict(extra="allow")

    friendly_name: Optional[str] = None
    device_class: Optional[str] = None
    icon: Optional[str] = None
    supported_features: Optional[int] = None


class LightAttributes(BaseAttributes):
    brightness: Optional[float] = None
    color_temp: Optional[float] = None
    rgb_color: Optional[List[int]] = None
    hs_color: Optional[List[float]] = None


class ClimateAttributes(BaseAttributes):
    temperature: Optional[float] = None
    current_temperature: Optional[float] = None
    hvac_action: Optional[str] = None
    hvac_modes: Optional[List[str]] = None
    fan_mode: Optional[str] = None


class MediaPlayerAttributes(BaseAttributes):
    volume_level: Optional[float] = None
    media_title: Optional[str] = None
    source: Optional[str] = None


class CoverAttributes(BaseAttributes):
    current_position: Optional[int] = None


class FanAttributes(BaseAttributes):
    percentage: Optional[int] = None
    preset_mode: Optional[str] = None


class SensorAttributes(BaseAttributes):
    unit_of_measurement: Optional[str] = None
    state_class: Optional[str] = None


ATTRIBUTE_MODELS: Dict[str, Type[BaseAttributes]] = {
    "light": LightAttributes,
    "climate": ClimateAttributes,
    "media_player": MediaPlayerAttributes,
    "cover": CoverAttributes,
    "fan": FanAttributes,
    "sensor": SensorAttributes,
}


class Entity(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    entity_id: str
    state: str = ""
    attributes: Dict[str, Any] = Field(default_factory=dict)
    last_changed: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    @property
    def domain(self) -> str:
        return self.entity_id.split(".", 1)[0]

    @property
    def friendly_name(self) -> Optional[str]:
        return self.attributes.get("friendly_name")

    def typed_attributes(self) -> BaseAttributes:
        model = ATTRIBUTE_MODELS.get(self.domain, BaseAttributes)
        try:
            return model.model_validate(self.attributes)
        except ValidationError as e:
            log.debug("Attributes of %s do not fit %s: %s", self.entity_id, model.__name__, e)
            return BaseAttributes.model_construct(**self.attributes)
