"""
Router: /api/v1/rebalance
GET  /plan?injection=       → recomendaciones comprar/vender/mantener por moneda
PUT  /targets/{coin_id}     → fijar el % objetivo de una moneda
POST /rebuild               → reconstruir asset_stats desde el log de transacciones
"""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from core.dependencies import get_current_user, get_portfolio_service
from core.responses import dec, ok
from services.portfolio_service import PortfolioService
from services.rebalance import RebalancePlan

router = APIRouter()


class TargetUpdate(BaseModel):
    target_pct: Decimal


def plan_to_dict(plan: RebalancePlan) -> dict:
    return {
        "current_total": dec(plan.current_total),
        "injection": dec(plan.injection),
        "new_total": dec(plan.new_total),
        "total_target_pct": dec(plan.total_target_pct),
        "recommendations": [
            {
                "coin_id": r.coin_id,
                "symbol": r.symbol,
                "action": r.action.value,
                "target_pct": dec(r.target_pct),
                "current_pct": dec(r.current_pct),
                "current_value": dec(r.current_value),
                "target_value": dec(r.target_value),
                "delta": dec(r.delta),
                "delta_amount": dec(r.delta_amount),
                "units": dec(r.units),
            }
            for r in plan.recommendations
        ],
    }


@router.get("/plan")
async def get_plan(
    injection: Decimal = Query(Decimal("0"), description="Capital a inyectar (negativo = retiro)"),
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """
    Plan de rebalanceo con los precios vivos actuales.
    meta.target_sum_ok es False si los objetivos no suman 100 (solo aviso).
    """
    plan = await service.get_rebalance_plan(user_id, injection)
    meta: dict = {"target_sum_ok": plan.target_sum_ok}
    if not plan.target_sum_ok:
        meta["warning"] = f"Los objetivos suman {plan.total_target_pct}%, no 100%"
    return ok(data=plan_to_dict(plan), meta=meta)


@router.put("/targets/{coin_id}")
async def set_target(
    coin_id: str,
    body: TargetUpdate,
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    pct = await service.set_target_pct(user_id, coin_id, body.target_pct)
    return ok(data={"coin_id": coin_id, "target_pct": dec(pct)})


@router.post("/rebuild")
async def rebuild(
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """Recalcula todos los agregados del usuario. Informa qué monedas no cuadraban."""
    report = await service.rebuild_aggregates(user_id)
    return ok(
        data={
            "coins_rebuilt": report.coins_rebuilt,
            "drifted": report.drifted,
            "gaps": report.gaps,
        },
        meta={"message": "Estadísticas reconstruidas"},
    )
