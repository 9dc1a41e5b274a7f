"""
Router: /api/v1/dashboard
GET /overview        → valoración del portafolio (posiciones, pesos, P&L)
WS  /stream?token=   → mismo payload, reenviado cada vez que cambia algún dato
"""

import asyncio

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from core.config import settings
from core.dependencies import get_current_user, get_portfolio_service
from core.responses import dec, ok
from core.security import verify_token
from services.live_view import PortfolioLiveView
from services.portfolio_service import PortfolioOverview, PortfolioService

logger = structlog.get_logger(__name__)

router = APIRouter()


def overview_to_dict(overview: PortfolioOverview) -> dict:
    valuation = overview.valuation
    return {
        "total_value": dec(valuation.total_value),
        "total_cost": dec(valuation.total_cost),
        "unrealized_pnl": dec(valuation.unrealized_pnl),
        "unrealized_pnl_pct": dec(valuation.unrealized_pnl_pct),
        "realized_pnl": dec(overview.realized_pnl),
        "positions": [
            {
                "coin_id": row.coin_id,
                "symbol": row.symbol,
                "quantity": dec(row.quantity),
                "average_cost": dec(row.average_cost),
                "live_price": dec(row.live_price),
                "market_value": dec(row.market_value),
                "cost_basis": dec(row.cost_basis),
                "unrealized_pnl": dec(row.unrealized_pnl),
                "unrealized_pnl_pct": dec(row.unrealized_pnl_pct),
                "weight_pct": dec(row.weight_pct),
            }
            for row in valuation.rows
        ],
        "address_book": [
            {"symbol": entry.symbol, "wallet_address": entry.wallet_address}
            for entry in overview.address_book
        ],
        "computed_at": overview.computed_at.isoformat(),
    }


@router.get("/overview")
async def get_overview(
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """
    Resumen del portafolio recalculado desde el log de transacciones:
    - Filas por moneda con cantidad > 0, ordenadas por valor de mercado
    - Totales, P&L no realizado y P&L realizado de por vida
    """
    overview = await service.get_overview(user_id)
    return ok(data=overview_to_dict(overview), meta={"positions": len(overview.valuation.rows)})


@router.websocket("/stream")
async def stream_overview(websocket: WebSocket, token: str = Query(...)) -> None:
    """
    Envía el overview al conectar y de nuevo tras cada commit en el store.
    Un recálculo nuevo cancela el anterior; nunca se envía un resultado superado.
    """
    try:
        user_id = verify_token(token)
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    state = websocket.app.state
    log = logger.bind(user_id=user_id)

    async def load() -> PortfolioOverview:
        async with state.store_scope() as store:
            service = PortfolioService(store=store, dead_zone=settings.REBALANCE_DEAD_ZONE)
            return await service.get_overview(user_id)

    async def send(overview: PortfolioOverview) -> None:
        await websocket.send_json(ok(data=overview_to_dict(overview)))

    view = PortfolioLiveView(loader=load, on_result=send)
    watcher = asyncio.create_task(view.watch(state.notifier))
    log.info("dashboard.stream_open")
    try:
        # El cliente no envía nada útil; receive_* solo sirve para detectar la desconexión
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await view.close()
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)
        log.info("dashboard.stream_closed", generation=view.generation)
