"""
Stream de notificaciones de cambio del store.

Cada evento es solo el nombre de la colección que cambió ("coins", "transactions",
"asset_stats"); no lleva diff, así que los consumidores deben volver a leer el estado.
Una instancia por proceso, creada en el lifespan de la app e inyectada explícitamente.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

logger = structlog.get_logger(__name__)


class ChangeNotifier:
    """Pub/sub en memoria basado en una asyncio.Queue por suscriptor."""

    def __init__(self, max_pending: int = 100) -> None:
        self._subscribers: set[asyncio.Queue[str]] = set()
        self._max_pending = max_pending

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, collection: str) -> None:
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(collection)
            except asyncio.QueueFull:
                # Sin diff: basta con que quede un evento pendiente para forzar el re-fetch
                logger.debug("notifier.queue_full", collection=collection)

    @asynccontextmanager
    async def subscribe(self) -> AsyncIterator["Subscription"]:
        queue: asyncio.Queue[str] = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.add(queue)
        logger.debug("notifier.subscribed", subscribers=len(self._subscribers))
        try:
            yield Subscription(queue)
        finally:
            self._subscribers.discard(queue)
            logger.debug("notifier.unsubscribed", subscribers=len(self._subscribers))


class Subscription:
    def __init__(self, queue: asyncio.Queue[str]) -> None:
        self._queue = queue

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> str:
        return await self._queue.get()

    def pending(self) -> int:
        return self._queue.qsize()
