from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel
from typing import Literal, Optional
from .bridge import HubBridge, HubConfig
from .mappings import DeviceType
from .results import as_dict

router = APIRouter(prefix="/api/v1")

def get_bridge(request: Request) -> HubBridge:
    return request.app.state.bridge

class ConfigureRequest(BaseModel):
    url: str
    token: str
    auto_discovery: bool = True

class CommandRequest(BaseModel):
    target: str
    action: Literal["turn_on", "turn_off", "toggle", "set_brightness", "set_temperature"]
    brightness: Optional[int] = None
    temperature: Optional[float] = None

class AreaRequest(BaseModel):
    area: str
    action: Literal["on", "off"]
    brightness: Optional[int] = None

@router.post("/configure")
async def configure(req: ConfigureRequest, request: Request):
    try:
        config = HubConfig(url=req.url, token=req.token, auto_discovery=req.auto_discovery)
    except ValueError as e:
        raise HTTPException(422, str(e))
    result = await get_bridge(request).configure(config)
    return as_dict(result)

@router.get("/status")
def status(request: Request):
    return get_bridge(request).get_status().model_dump(mode="json")

@router.get("/devices")
def list_devices(request: Request, type: Optional[DeviceType] = None, area: Optional[str] = None):
    bridge = get_bridge(request)
    if area:
        devices = bridge.get_devices_by_area(area)
    else:
        devices = bridge.get_all_devices()
    if type:
        devices = [d for d in devices if d.type == type]
    return [d.model_dump(mode="json") for d in devices]

@router.get("/devices/find")
def find_device(q: str, request: Request):
    device = get_bridge(request).find_device(q)
    if device is None:
        raise HTTPException(404, f"I couldn't find a device called \"{q}\"")
    return device.model_dump(mode="json")

@router.get("/devices/summary")
def summarize(request: Request):
    return as_dict(get_bridge(request).summarize())

@router.get("/entities/{entity_id}")
def get_entity(entity_id: str, request: Request):
    e = get_bridge(request).get_state(entity_id)
    if not e:
        raise HTTPException(404, "Entity not found")
    return e.model_dump(mode="json")

@router.post("/command")
async def command(req: CommandRequest, request: Request):
    bridge = get_bridge(request)
    if req.action == "turn_on":
        result = await bridge.turn_on(req.target, req.brightness)
    elif req.action == "turn_off":
        result = await bridge.turn_off(req.target)
    elif req.action == "toggle":
        result = await bridge.toggle(req.target)
    elif req.action == "set_brightness":
        if req.brightness is None:
            raise HTTPException(400, "brightness is required for set_brightness")
        result = await bridge.set_brightness(req.target, req.brightness)
    else:
        if req.temperature is None:
            raise HTTPException(400, "temperature is required for set_temperature")
        result = await bridge.set_temperature(req.target, req.temperature)
    return as_dict(result)

@router.post("/area")
async def control_area(req: AreaRequest, request: Request):
    result = await get_bridge(request).control_area(req.area, req.action, req.brightness)
    return as_dict(result)

@router.get("/audit")
def audit(request: Request, limit: int = 50):
    log = get_bridge(request).audit
    if log is None:
        return []
    return log.recent(limit)

@router.post("/disconnect")
async def disconnect(request: Request):
    await get_bridge(request).disconnect()
    return {"status": "ok"}
