"""
Router: /api/v1/prices
POST /sync            → refrescar los precios vivos de las monedas del usuario
GET  /live?coin_id=   → precio puntual de una moneda (rellena el formulario de venta)

Fuente: CoinGecko /simple/price en la divisa configurada (PRICE_VS_CURRENCY).
Un fallo del feed nunca borra precios guardados.
"""

from fastapi import APIRouter, Depends, Query

from core.config import settings
from core.dependencies import get_current_user, get_price_feed, get_store
from core.errors import NotFound, PriceFeedError
from core.responses import dec, ok
from feeds.price_sync import PriceFeed, PriceSyncService, live_price_for
from store.base import Store

router = APIRouter()


@router.post("/sync")
async def sync_prices(
    user_id: str = Depends(get_current_user),
    store: Store = Depends(get_store),
    feed: PriceFeed = Depends(get_price_feed),
) -> dict:
    """Sincronización best-effort: los errores van en data.errors, no como HTTP error."""
    stats = await PriceSyncService(store=store, feed=feed).sync_prices(user_id)
    return ok(
        data={
            "coins_seen": stats.coins_seen,
            "prices_updated": stats.prices_updated,
            "missing": stats.missing,
            "errors": stats.errors,
        },
        meta={"duration_seconds": round(stats.duration_seconds, 2)},
    )


@router.get("/live")
async def get_live_price(
    coin_id: str = Query(...),
    user_id: str = Depends(get_current_user),
    store: Store = Depends(get_store),
    feed: PriceFeed = Depends(get_price_feed),
) -> dict:
    coin = await store.get_coin(user_id, coin_id)
    if coin is None:
        raise NotFound(f"Moneda {coin_id} no encontrada")

    price = await live_price_for(coin, feed)
    if price is None:
        raise PriceFeedError(f"Sin precio disponible para {coin.price_feed_id}")

    return ok(
        data={
            "coin_id": coin.id,
            "symbol": coin.symbol.upper(),
            "price": dec(price),
            "vs_currency": settings.PRICE_VS_CURRENCY,
        },
        meta={"source": "coingecko"},
    )
