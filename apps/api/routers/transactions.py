"""
Router: /api/v1/transactions
GET    /           → historial paginado con filtros de fecha (o period=this_month)
POST   /           → registrar compra/venta (actualiza el agregado de la moneda)
DELETE /{tx_id}    → borrar transacción revirtiendo su efecto en el agregado
GET    /export     → descarga CSV del historial filtrado
"""

import csv
import io
from datetime import date, datetime, time, timezone
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from core.dependencies import get_current_user, get_portfolio_service
from core.errors import InvalidInput
from core.responses import dec, ok
from services.portfolio_service import PortfolioService, month_range
from store.base import DateRange, TransactionKind, TransactionRecord

router = APIRouter()


class TransactionCreate(BaseModel):
    coin_id: str
    type: TransactionKind
    amount: Decimal
    # Compra: precio por unidad. Venta: precio de venta (price at sale).
    price: Decimal


def _resolve_range(
    from_date: date | None,
    to_date: date | None,
    period: str | None,
) -> DateRange | None:
    """period=this_month tiene prioridad; si no, rango de fechas inclusivo (día completo)."""
    if period == "this_month":
        return month_range(date.today())
    if period is not None:
        raise InvalidInput(f"period no soportado: {period}")
    if from_date is None and to_date is None:
        return None
    return DateRange(
        start=datetime.combine(from_date, time.min, tzinfo=timezone.utc) if from_date else None,
        end=datetime.combine(to_date, time(23, 59, 59), tzinfo=timezone.utc) if to_date else None,
    )


@router.get("")
async def list_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    period: str | None = Query(None, description="Atajo de rango: this_month"),
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """
    Historial del usuario, más reciente primero.
    meta incluye: page, limit, total, pages.
    """
    history = await service.list_transactions(user_id, _resolve_range(from_date, to_date, period))
    total = len(history)
    offset = (page - 1) * limit

    return ok(
        data=[_tx_to_dict(tx) for tx in history[offset : offset + limit]],
        meta={
            "page": page,
            "limit": limit,
            "total": total,
            "pages": max(1, -(-total // limit)),  # ceil division
        },
    )


@router.post("", status_code=201)
async def create_transaction(
    body: TransactionCreate,
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """
    Registra la transacción. Una venta mayor que el saldo se rechaza con 409
    (insufficient_quantity) y no se escribe nada.
    """
    recorded = await service.record_transaction(
        user_id, body.coin_id, body.type, body.amount, body.price
    )
    return ok(
        data={
            "id": recorded.id,
            "type": recorded.kind.value,
            "realized_pnl": dec(recorded.realized_pnl),
            "position": {
                "symbol": recorded.position.symbol,
                "quantity": dec(recorded.position.quantity),
                "cost_basis": dec(recorded.position.cost_basis),
            },
        },
        meta={"message": "Transacción registrada"},
    )


@router.delete("/{tx_id}")
async def delete_transaction(
    tx_id: str,
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    aggregate = await service.delete_transaction(user_id, tx_id)
    return ok(
        data={
            "id": tx_id,
            "coin_id": aggregate.coin_id,
            "total_qty": dec(aggregate.total_qty),
            "total_cost": dec(aggregate.total_cost),
            "avg_buy_price": dec(aggregate.avg_buy_price),
        },
        meta={"message": "Transacción eliminada; estadísticas recalculadas"},
    )


@router.get("/export")
async def export_transactions(
    from_date: date | None = Query(None),
    to_date: date | None = Query(None),
    period: str | None = Query(None),
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> StreamingResponse:
    """Exporta las transacciones filtradas como CSV."""
    history = await service.list_transactions(user_id, _resolve_range(from_date, to_date, period))

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([
        "id", "created_at", "symbol", "type", "amount",
        "price_at_date", "total_value", "price_at_sale", "realized_pnl",
    ])
    for tx in history:
        writer.writerow([
            tx.id, tx.created_at.isoformat(), tx.coin_symbol, tx.kind.value,
            str(tx.amount), str(tx.price_at_transaction),
            str(tx.amount * tx.price_at_transaction),
            str(tx.price_at_sale) if tx.price_at_sale is not None else "",
            str(tx.realized_pnl) if tx.realized_pnl is not None else "",
        ])

    output.seek(0)
    filename = f"transactions_{date.today()}.csv"
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


def _tx_to_dict(tx: TransactionRecord) -> dict:
    return {
        "id": tx.id,
        "created_at": tx.created_at.isoformat(),
        "coin_id": tx.coin_id,
        "symbol": tx.coin_symbol,
        "type": tx.kind.value,
        "amount": dec(tx.amount),
        "price_at_date": dec(tx.price_at_transaction),
        "total_value": dec(tx.amount * tx.price_at_transaction),
        "price_at_sale": dec(tx.price_at_sale),
        "realized_pnl": dec(tx.realized_pnl),
    }
