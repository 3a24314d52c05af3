import asyncio, logging
from typing import AsyncIterator, Callable, Generic, List, TypeVar

log = logging.getLogger("realtime")

T = TypeVar("T")

class Channel(Generic[T]):
    """Fan-out to any number of handlers; one failing handler never costs the others a delivery."""

    def __init__(self, name: str = "channel"):
        self._name = name
        self._handlers: List[Callable[[T], None]] = []

    def __len__(self):
        return len(self._handlers)

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)
        return unsubscribe

    def publish(self, item: T):
        for handler in list(self._handlers):
            try:
                handler(item)
            except Exception:
                log.exception("%s handler %r failed", self._name, handler)

    def clear(self):
        self._handlers.clear()

class Broadcaster:
    def __init__(self):
        self._queues = set()

    def __len__(self):
        return len(self._queues)

    async def register(self) -> AsyncIterator[dict]:
        q: asyncio.Queue = asyncio.Queue()
        self._queues.add(q)
        try:
            while True:
                yield await q.get()
        finally:
            self._queues.discard(q)

    def publish(self, event: dict):
        for q in list(self._queues):
            q.put_nowait(event)
