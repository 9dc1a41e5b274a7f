"""
Refresco periódico de precios vivos.

Dos modos de arranque:
- Dentro de la API: el lifespan de main.py lanza run_price_scheduler() como tarea
  si PRICE_REFRESH_INTERVAL_MINUTES > 0 y la cancela al apagar.
- Proceso independiente: python -m feeds.scheduler
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.logging_config import configure_logging
from feeds.coingecko_client import CoinGeckoClient
from feeds.price_sync import PriceFeed, PriceSyncService, PriceSyncStats
from store.notifier import ChangeNotifier
from store.sql_store import SqlStore

logger = structlog.get_logger(__name__)


async def refresh_once(
    session_factory: async_sessionmaker[AsyncSession],
    feed: PriceFeed,
    notifier: ChangeNotifier | None = None,
) -> PriceSyncStats:
    """Una pasada de sincronización con su propia sesión de BD."""
    async with session_factory() as session:
        store = SqlStore(session=session, notifier=notifier)
        return await PriceSyncService(store=store, feed=feed).sync_prices()


async def run_price_scheduler(
    interval_minutes: int,
    session_factory: async_sessionmaker[AsyncSession],
    feed: PriceFeed,
    notifier: ChangeNotifier | None = None,
) -> None:
    """
    Bucle infinito: sincroniza y duerme interval_minutes.
    Un fallo en una pasada se loguea y no detiene el bucle; la cancelación sí.
    """
    logger.info("scheduler.start", interval_minutes=interval_minutes)
    try:
        while True:
            try:
                await refresh_once(session_factory, feed, notifier)
            except Exception as exc:
                logger.error("scheduler.tick_failed", error=str(exc), exc_info=exc)
            await asyncio.sleep(interval_minutes * 60)
    except asyncio.CancelledError:
        logger.info("scheduler.stopped")
        raise


async def _standalone() -> None:
    from core.database import AsyncSessionLocal

    interval = settings.PRICE_REFRESH_INTERVAL_MINUTES
    async with CoinGeckoClient(
        base_url=settings.PRICE_FEED_BASE_URL,
        vs_currency=settings.PRICE_VS_CURRENCY,
        api_key=settings.PRICE_FEED_API_KEY,
        timeout=settings.PRICE_FEED_TIMEOUT_SECONDS,
    ) as feed:
        if interval <= 0:
            # Sin intervalo configurado: una sola pasada (útil desde cron)
            await refresh_once(AsyncSessionLocal, feed)
            return
        await run_price_scheduler(interval, AsyncSessionLocal, feed)


def main() -> None:
    configure_logging(settings.LOG_LEVEL, settings.APP_ENV)
    logger.info(
        "scheduler.boot",
        interval_minutes=settings.PRICE_REFRESH_INTERVAL_MINUTES,
        env=settings.APP_ENV,
    )
    asyncio.run(_standalone())


if __name__ == "__main__":
    main()
