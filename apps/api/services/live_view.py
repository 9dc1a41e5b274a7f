"""
Recomputación en vivo del portafolio a partir de notificaciones de cambio.

- Cada notificación dispara una recomputación COMPLETA (lee todo el estado actual),
  así el orden de llegada de las notificaciones no importa.
- Un disparo nuevo cancela la recomputación en curso; un resultado de una pasada
  superada o que llega tras close() se descarta, nunca se aplica sobre estado viejo.
- Si una pasada falla, se conserva el último resultado bueno y se loguea.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

import structlog

from core.errors import Aborted, PortfolioError
from store.notifier import ChangeNotifier

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PortfolioLiveView(Generic[T]):
    """
    Uso:
        view = PortfolioLiveView(loader=lambda: service.get_overview(user_id), on_result=send)
        watcher = asyncio.create_task(view.watch(notifier))
        ...
        await view.close()
    """

    def __init__(
        self,
        loader: Callable[[], Awaitable[T]],
        on_result: Callable[[T], Awaitable[None]] | None = None,
    ) -> None:
        self._loader = loader
        self._on_result = on_result
        self._generation = 0
        self._task: asyncio.Task[T | None] | None = None
        self._closed = False
        self.last_result: T | None = None
        self.last_error: Exception | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def generation(self) -> int:
        return self._generation

    def trigger(self) -> asyncio.Task[T | None]:
        """Lanza una recomputación, cancelando la que esté en curso."""
        if self._closed:
            raise Aborted("La vista está cerrada")
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run(self._generation))
        return self._task

    async def refresh(self) -> T | None:
        """Recalcula y espera. None si la pasada fue superada, cancelada o falló."""
        task = self.trigger()
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _run(self, generation: int) -> T | None:
        try:
            result = await self._loader()
        except asyncio.CancelledError:
            logger.debug("live_view.cancelled", generation=generation)
            raise
        except PortfolioError as exc:
            self.last_error = exc
            logger.warning("live_view.recompute_failed", generation=generation, error=str(exc), code=exc.code)
            return None
        except Exception as exc:
            self.last_error = exc
            logger.error("live_view.recompute_error", generation=generation, error=str(exc), exc_info=exc)
            return None

        if self._closed or generation != self._generation:
            logger.debug("live_view.stale_discarded", generation=generation, current=self._generation)
            return None

        self.last_result = result
        self.last_error = None
        if self._on_result is not None:
            try:
                await self._on_result(result)
            except Exception as exc:
                # p.ej. el WebSocket ya se cerró; el resultado calculado sigue siendo válido
                self.last_error = exc
                logger.warning("live_view.publish_failed", generation=generation, error=str(exc))
        return result

    async def watch(self, notifier: ChangeNotifier) -> None:
        """Carga inicial + una recomputación por cada notificación, hasta close() o cancelación."""
        async with notifier.subscribe() as subscription:
            self.trigger()
            async for collection in subscription:
                if self._closed:
                    break
                logger.debug("live_view.change", collection=collection)
                self.trigger()

    async def close(self) -> None:
        """Cierra la vista: cancela la pasada en curso y descarta cualquier resultado posterior."""
        self._closed = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
