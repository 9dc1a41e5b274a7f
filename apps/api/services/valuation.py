"""
Proyección de posiciones a filas de valoración + agregador de P&L realizado.

Funciones puras (sin BD, sin IO): se recalculan desde cero en cada cambio.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from services.ledger import EPSILON, ZERO, CoinPosition, average_cost
from store.base import TransactionKind, TransactionRecord

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ValuationRow:
    coin_id: str
    symbol: str
    quantity: Decimal
    average_cost: Decimal
    live_price: Decimal
    market_value: Decimal
    cost_basis: Decimal
    unrealized_pnl: Decimal
    unrealized_pnl_pct: Decimal
    weight_pct: Decimal


@dataclass(frozen=True)
class PortfolioValuation:
    rows: list[ValuationRow]
    total_value: Decimal
    total_cost: Decimal

    @property
    def unrealized_pnl(self) -> Decimal:
        return self.total_value - self.total_cost

    @property
    def unrealized_pnl_pct(self) -> Decimal:
        if self.total_cost == ZERO:
            return ZERO
        return self.unrealized_pnl / self.total_cost * HUNDRED


def project_valuation(positions: Iterable[CoinPosition]) -> PortfolioValuation:
    """
    - Descarta posiciones con quantity <= EPSILON (salida total, no se muestran).
    - total_value = suma de market_value solo sobre las posiciones visibles.
    - Orden: market_value DESC, símbolo ASC como desempate.
    """
    held = [p for p in positions if p.quantity > EPSILON]
    total_value = sum((p.quantity * p.live_price for p in held), ZERO)

    rows: list[ValuationRow] = []
    for p in held:
        market_value = p.quantity * p.live_price
        pnl = market_value - p.cost_basis
        rows.append(
            ValuationRow(
                coin_id=p.coin_id,
                symbol=p.symbol,
                quantity=p.quantity,
                average_cost=average_cost(p),
                live_price=p.live_price,
                market_value=market_value,
                cost_basis=p.cost_basis,
                unrealized_pnl=pnl,
                unrealized_pnl_pct=pnl / p.cost_basis * HUNDRED if p.cost_basis != ZERO else ZERO,
                weight_pct=market_value / total_value * HUNDRED if total_value != ZERO else ZERO,
            )
        )

    rows.sort(key=lambda r: (-r.market_value, r.symbol))
    return PortfolioValuation(
        rows=rows,
        total_value=total_value,
        total_cost=sum((r.cost_basis for r in rows), ZERO),
    )


def sum_realized_pnl(transactions: Iterable[TransactionRecord]) -> Decimal:
    """P&L realizado de por vida: suma de realized_pnl de las ventas (aunque ya no haya saldo)."""
    return sum(
        (
            tx.realized_pnl
            for tx in transactions
            if tx.kind is TransactionKind.SELL and tx.realized_pnl is not None
        ),
        ZERO,
    )
