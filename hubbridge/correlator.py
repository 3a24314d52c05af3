import asyncio, logging
from dataclasses import dataclass
from typing import Any, Dict
from .errors import RequestFailedError

log = logging.getLogger("ha")

@dataclass
class PendingRequest:
    id: int
    type: str
    future: asyncio.Future

class RequestCorrelator:
    """Matches duplex ``result`` messages to the requests that caused them.

    Ids start at 1 and only ever grow for the lifetime of one connection;
    ``reset`` starts a new id space for the next one.
    """

    def __init__(self):
        self._next_id = 1
        self._pending: Dict[int, PendingRequest] = {}

    def __len__(self):
        return len(self._pending)

    @property
    def next_id(self) -> int:
        return self._next_id

    def register(self, type_: str) -> PendingRequest:
        pending = PendingRequest(self._next_id, type_, asyncio.get_running_loop().create_future())
        self._next_id += 1
        self._pending[pending.id] = pending
        return pending

    def discard(self, request_id: int):
        self._pending.pop(request_id, None)

    def resolve(self, message: Dict[str, Any]) -> bool:
        pending = self._pending.pop(message.get("id"), None)
        if pending is None:
            log.debug("No pending request for result id=%s", message.get("id"))
            return False
        if pending.future.done():
            return True
        if message.get("success"):
            pending.future.set_result(message.get("result"))
        else:
            error = message.get("error") or {}
            pending.future.set_exception(
                RequestFailedError(pending.id, error.get("code"), error.get("message"))
            )
        return True

    def fail_all(self, exc: BaseException):
        pending, self._pending = self._pending, {}
        for p in pending.values():
            if not p.future.done():
                p.future.set_exception(exc)
        if pending:
            log.info("Failed %d pending request(s): %s", len(pending), exc)

    def reset(self, exc: BaseException):
        self.fail_all(exc)
        self._next_id = 1
