"""
Ledger de coste medio (average-cost accounting) por moneda.

Reglas críticas:
- NUNCA float: todas las cantidades y precios son Decimal.
- Coste medio único por moneda (no lotes FIFO/LIFO): una venta reduce el coste base
  en amount * coste_medio, y el coste medio de lo que queda no cambia.
- El coste medio se calcula ANTES de mutar la posición.
- Borrar una venta se revierte con el coste medio capturado en el momento de la venta,
  nunca con el actual.
- replay() y la actualización incremental de agregados usan las MISMAS funciones
  apply_*/reverse_*, así ambos caminos no pueden divergir.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

import structlog

from core.errors import InsufficientQuantity
from store.base import CoinAggregate, TransactionKind, TransactionRecord

logger = structlog.get_logger(__name__)

# Tolerancia para comparaciones de cantidad (redondeos de precisión)
EPSILON = Decimal("0.000001")
ZERO = Decimal("0")


@dataclass
class CoinPosition:
    coin_id: str
    symbol: str
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO
    live_price: Decimal = ZERO


@dataclass(frozen=True)
class SellResult:
    realized_pnl: Decimal
    avg_cost: Decimal        # coste medio en el momento de la venta (persistir para revertir)


@dataclass
class LedgerReplay:
    positions: dict[str, CoinPosition]
    realized_by_tx: dict[str, Decimal] = field(default_factory=dict)
    gaps: list[str] = field(default_factory=list)   # ids de ventas que superaban el saldo

    @property
    def realized_pnl(self) -> Decimal:
        return sum(self.realized_by_tx.values(), ZERO)


# ---------------------------------------------------------------------------
# Operaciones puras sobre una posición
# ---------------------------------------------------------------------------


def average_cost(position: CoinPosition) -> Decimal:
    """cost_basis / quantity, 0 si no hay cantidad."""
    if position.quantity <= ZERO:
        return ZERO
    return position.cost_basis / position.quantity


def apply_buy(position: CoinPosition, amount: Decimal, price: Decimal) -> None:
    position.quantity += amount
    position.cost_basis += amount * price


def apply_sell(position: CoinPosition, amount: Decimal, price_at_sale: Decimal) -> SellResult:
    """
    Aplica una venta y devuelve el P&L realizado junto al coste medio usado.
    Lanza InsufficientQuantity si amount > quantity (+EPSILON); en ese caso
    la posición no se modifica.
    """
    if amount > position.quantity + EPSILON:
        raise InsufficientQuantity(amount, position.quantity, position.symbol)

    avg_cost = average_cost(position)
    realized = (price_at_sale - avg_cost) * amount
    position.quantity -= amount
    position.cost_basis -= amount * avg_cost
    return SellResult(realized_pnl=realized, avg_cost=avg_cost)


def reverse_buy(position: CoinPosition, amount: Decimal, price: Decimal) -> None:
    position.quantity -= amount
    position.cost_basis -= amount * price


def reverse_sell(position: CoinPosition, amount: Decimal, previous_avg_cost: Decimal) -> None:
    position.quantity += amount
    position.cost_basis += amount * previous_avg_cost


# ---------------------------------------------------------------------------
# Conversión agregado persistido <-> posición
# ---------------------------------------------------------------------------


def position_from_aggregate(
    aggregate: CoinAggregate | None,
    coin_id: str,
    symbol: str,
    live_price: Decimal = ZERO,
) -> CoinPosition:
    if aggregate is None:
        return CoinPosition(coin_id=coin_id, symbol=symbol, live_price=live_price)
    return CoinPosition(
        coin_id=coin_id,
        symbol=symbol,
        quantity=aggregate.total_qty,
        cost_basis=aggregate.total_cost,
        live_price=live_price,
    )


def aggregate_from_position(
    position: CoinPosition,
    user_id: str,
    target_pct: Decimal = ZERO,
) -> CoinAggregate:
    return CoinAggregate(
        coin_id=position.coin_id,
        user_id=user_id,
        total_qty=position.quantity,
        total_cost=position.cost_basis,
        avg_buy_price=average_cost(position),
        target_pct=target_pct,
    )


# ---------------------------------------------------------------------------
# Replay completo del log
# ---------------------------------------------------------------------------


def replay(
    transactions: Iterable[TransactionRecord],
    prices: dict[str, Decimal] | None = None,
    strict: bool = False,
) -> LedgerReplay:
    """
    Reconstruye todas las posiciones desde el log de transacciones.

    transactions: cualquier orden; se aplican por created_at ASC (id como desempate).
    prices: coin_id → precio vivo (0 si falta).
    strict: si True, una venta mayor que el saldo lanza InsufficientQuantity.
            Si False (data gap, p.ej. se borró una compra antigua), la venta solo
            consume lo disponible y el exceso se ignora.

    Idempotente: el mismo log produce siempre el mismo resultado.
    """
    prices = prices or {}
    positions: dict[str, CoinPosition] = {}
    result = LedgerReplay(positions=positions)

    for tx in sorted(transactions, key=lambda t: (t.created_at, t.id)):
        position = positions.get(tx.coin_id)
        if position is None:
            position = CoinPosition(
                coin_id=tx.coin_id,
                symbol=tx.coin_symbol,
                live_price=prices.get(tx.coin_id, ZERO),
            )
            positions[tx.coin_id] = position

        if tx.kind is TransactionKind.BUY:
            apply_buy(position, tx.amount, tx.price_at_transaction)
            continue

        sale_price = tx.price_at_sale if tx.price_at_sale is not None else tx.price_at_transaction
        amount = tx.amount
        if amount > position.quantity + EPSILON:
            if strict:
                raise InsufficientQuantity(amount, position.quantity, position.symbol)
            logger.warning(
                "ledger.replay_gap",
                tx_id=tx.id,
                symbol=position.symbol,
                requested=str(amount),
                available=str(position.quantity),
            )
            result.gaps.append(tx.id)
            amount = max(position.quantity, ZERO)

        sell = apply_sell(position, amount, sale_price)
        result.realized_by_tx[tx.id] = sell.realized_pnl

    return result
