"""
Sincronización de precios vivos de todas las monedas registradas.

Reglas:
- Best-effort: si el feed falla, los precios anteriores se quedan como están.
- Una moneda sin precio en la respuesta conserva su último precio conocido.
- Logging estructurado con el total de monedas actualizadas y errores.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

import structlog

from core.errors import PriceFeedError, StoreUnavailable
from store.base import CoinDescriptor, Store

logger = structlog.get_logger(__name__)


class PriceFeed(Protocol):
    async def get_prices(self, ids: list[str]) -> dict[str, Decimal]: ...


# ---------------------------------------------------------------------------
# Resultado de sincronización
# ---------------------------------------------------------------------------


@dataclass
class PriceSyncStats:
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    coins_seen: int = 0
    prices_updated: int = 0
    missing: list[str] = field(default_factory=list)   # ids sin precio en el feed
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float:
        if self.finished_at:
            return (self.finished_at - self.started_at).total_seconds()
        return 0.0

    def finish(self) -> None:
        self.finished_at = datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Servicio
# ---------------------------------------------------------------------------


class PriceSyncService:
    """
    Uso:
        service = PriceSyncService(store=store, feed=coingecko_client)
        stats = await service.sync_prices()            # todas las monedas
        stats = await service.sync_prices(user_id="u1")  # solo las de un usuario
    """

    def __init__(self, store: Store, feed: PriceFeed) -> None:
        self.store = store
        self.feed = feed

    async def sync_prices(self, user_id: str | None = None) -> PriceSyncStats:
        stats = PriceSyncStats()
        log = logger.bind(user_id=user_id)
        log.info("prices.sync_start")

        try:
            coins = await self.store.list_coins(user_id)
            stats.coins_seen = len(coins)
            if coins:
                await self._apply_prices(coins, stats)
        except PriceFeedError as exc:
            stats.errors.append(str(exc))
            log.warning("prices.feed_failed", error=str(exc))
        except StoreUnavailable as exc:
            stats.errors.append(str(exc))
            log.warning("prices.store_unavailable", error=str(exc))
        finally:
            stats.finish()

        log.info(
            "prices.sync_complete",
            coins=stats.coins_seen,
            updated=stats.prices_updated,
            missing=len(stats.missing),
            errors=len(stats.errors),
            duration_seconds=round(stats.duration_seconds, 2),
        )
        return stats

    async def _apply_prices(self, coins: list[CoinDescriptor], stats: PriceSyncStats) -> None:
        feed_ids = sorted({c.price_feed_id for c in coins})
        prices = await self.feed.get_prices(feed_ids)

        for coin in coins:
            price = prices.get(coin.price_feed_id)
            if price is None:
                if coin.price_feed_id not in stats.missing:
                    stats.missing.append(coin.price_feed_id)
                continue
            if price != coin.current_price:
                await self.store.update_coin_price(coin.id, price)
                stats.prices_updated += 1

        await self.store.commit()


async def live_price_for(coin: CoinDescriptor, feed: PriceFeed) -> Decimal | None:
    """Precio puntual de una moneda (botón "precio en vivo" del formulario). None si falla."""
    try:
        prices = await feed.get_prices([coin.price_feed_id])
    except PriceFeedError as exc:
        logger.warning("prices.live_lookup_failed", coin_id=coin.id, error=str(exc))
        return None
    return prices.get(coin.price_feed_id)
