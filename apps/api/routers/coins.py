"""
Router: /api/v1/coins
GET    /           → monedas registradas por el usuario
POST   /           → registrar moneda (símbolo + id de CoinGecko + wallet opcional)
DELETE /{coin_id}  → borrar moneda junto con sus transacciones y agregado
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from core.dependencies import get_current_user, get_portfolio_service
from core.responses import dec, ok
from services.portfolio_service import PortfolioService
from store.base import CoinDescriptor

router = APIRouter()


class CoinCreate(BaseModel):
    symbol: str
    coingecko_id: str
    wallet_address: str | None = None

    @field_validator("symbol", "coingecko_id")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("no puede estar vacío")
        return v


def coin_to_dict(coin: CoinDescriptor) -> dict:
    return {
        "id": coin.id,
        "symbol": coin.symbol,
        "name": coin.name,
        "coingecko_id": coin.coingecko_id,
        "wallet_address": coin.wallet_address,
        "current_price": dec(coin.current_price),
    }


@router.get("")
async def list_coins(
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    coins = await service.list_coins(user_id)
    return ok(data=[coin_to_dict(c) for c in coins], meta={"total": len(coins)})


@router.post("", status_code=201)
async def create_coin(
    body: CoinCreate,
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    coin = await service.add_coin(
        user_id,
        symbol=body.symbol,
        coingecko_id=body.coingecko_id,
        wallet_address=body.wallet_address,
    )
    return ok(data=coin_to_dict(coin), meta={"message": "Moneda registrada"})


@router.delete("/{coin_id}")
async def delete_coin(
    coin_id: str,
    user_id: str = Depends(get_current_user),
    service: PortfolioService = Depends(get_portfolio_service),
) -> dict:
    """Borra la moneda. Su historial de transacciones se elimina con ella."""
    await service.remove_coin(user_id, coin_id)
    return ok(data={"id": coin_id}, meta={"message": "Moneda eliminada"})
