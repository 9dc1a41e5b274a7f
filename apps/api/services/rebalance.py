"""
Recomendador de rebalanceo.

Para cada posición: delta = (target_pct/100) * (total_actual + inyección) - valor_actual.
Con |delta| <= zona muerta no se recomienda nada (ruido de redondeo); por encima,
compra (delta > 0) o venta (delta < 0) de delta / precio_vivo unidades.

La suma de target_pct se expone al llamador como aviso: aquí no se normaliza
ni se rechaza si es distinta de 100.
"""

import enum
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_DEAD_ZONE = Decimal("100")


class RebalanceAction(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"
    ON_TARGET = "on_target"


@dataclass(frozen=True)
class RebalanceTarget:
    symbol: str
    target_pct: Decimal
    current_value: Decimal
    live_price: Decimal
    coin_id: str | None = None
    quantity: Decimal = ZERO


@dataclass(frozen=True)
class RebalanceRecommendation:
    symbol: str
    coin_id: str | None
    action: RebalanceAction
    target_pct: Decimal
    current_pct: Decimal
    current_value: Decimal
    target_value: Decimal
    delta: Decimal                  # con signo: + comprar, - vender
    delta_amount: Decimal           # |delta| si hay acción, 0 si on_target
    units: Decimal | None           # delta_amount / live_price; None si no hay precio


@dataclass(frozen=True)
class RebalancePlan:
    recommendations: list[RebalanceRecommendation]
    current_total: Decimal
    injection: Decimal
    new_total: Decimal
    total_target_pct: Decimal

    @property
    def target_sum_ok(self) -> bool:
        return self.total_target_pct == HUNDRED


def classify(delta: Decimal, dead_zone: Decimal = DEFAULT_DEAD_ZONE) -> RebalanceAction:
    if abs(delta) <= dead_zone:
        return RebalanceAction.ON_TARGET
    return RebalanceAction.BUY if delta > ZERO else RebalanceAction.SELL


def compute_rebalance(
    targets: Iterable[RebalanceTarget],
    injection: Decimal = ZERO,
    dead_zone: Decimal = DEFAULT_DEAD_ZONE,
) -> RebalancePlan:
    """
    injection puede ser 0 o negativo (retiro planificado); la política la decide el llamador.
    Las recomendaciones conservan el orden de entrada.
    """
    targets = list(targets)
    current_total = sum((t.current_value for t in targets), ZERO)
    new_total = current_total + injection

    recommendations: list[RebalanceRecommendation] = []
    for t in targets:
        target_value = t.target_pct / HUNDRED * new_total
        delta = target_value - t.current_value
        action = classify(delta, dead_zone)

        if action is RebalanceAction.ON_TARGET:
            delta_amount = ZERO
            units: Decimal | None = ZERO
        else:
            delta_amount = abs(delta)
            units = delta_amount / t.live_price if t.live_price > ZERO else None

        recommendations.append(
            RebalanceRecommendation(
                symbol=t.symbol,
                coin_id=t.coin_id,
                action=action,
                target_pct=t.target_pct,
                current_pct=(
                    t.current_value / current_total * HUNDRED if current_total != ZERO else ZERO
                ),
                current_value=t.current_value,
                target_value=target_value,
                delta=delta,
                delta_amount=delta_amount,
                units=units,
            )
        )

    return RebalancePlan(
        recommendations=recommendations,
        current_total=current_total,
        injection=injection,
        new_total=new_total,
        total_target_pct=sum((t.target_pct for t in targets), ZERO),
    )
