import json, logging
import httpx
from typing import Any, Dict, List, Optional
from .errors import HttpError, ServiceInvocationError

log = logging.getLogger("ha")

class HubClient:
    """Bearer-authenticated REST half of the hub transport."""

    def __init__(self, url: str, token: str, timeout: float = 15,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers={"Authorization": f"Bearer {token}", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def call(self, endpoint: str, method: str = "GET", body: Optional[Any] = None,
                   error_cls=HttpError) -> Any:
        content = json.dumps(body) if body is not None else None
        r = await self._client.request(method, endpoint, content=content)
        if r.is_error:
            raise error_cls(r.status_code, r.text)
        if not r.content:
            return None
        return r.json()

    async def status(self) -> Dict[str, Any]:
        return await self.call("/api/")

    async def states(self) -> List[Dict[str, Any]]:
        return await self.call("/api/states")

    async def entity_registry(self) -> List[Dict[str, Any]]:
        return await self.call("/api/config/entity_registry/list")

    async def area_registry(self) -> List[Dict[str, Any]]:
        return await self.call("/api/config/area_registry/list")

    async def call_service(self, domain: str, service: str, data: Dict[str, Any]):
        log.debug("Calling %s.%s with %s", domain, service, data)
        return await self.call(f"/api/services/{domain}/{service}", "POST", data,
                               error_cls=ServiceInvocationError)

    def websocket_url(self) -> str:
        return self.url.replace("http", "ws", 1) + "/api/websocket"

    async def aclose(self):
        await self._client.aclose()
