from sse_starlette.sse import EventSourceResponse
from typing import AsyncIterator
import asyncio, json

def device_event(device) -> dict:
    return {"event": "state", "data": device.model_dump(mode="json")}

def sse_stream(generator: AsyncIterator[dict], ping: int = 15) -> EventSourceResponse:
    async def event_publisher():
        async for ev in generator:
            yield {
                "event": ev.get("event", "message"),
                "data": json.dumps(ev["data"]) if "data" in ev else json.dumps(ev)
            }
            await asyncio.sleep(0)
    return EventSourceResponse(event_publisher(), ping=ping)
