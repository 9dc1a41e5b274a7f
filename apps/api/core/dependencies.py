"""
Dependencias inyectables de FastAPI.
Uso: añadir como parámetro en la firma del endpoint con Depends().
"""

from collections.abc import AsyncIterator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.database import AsyncSessionLocal
from core.security import verify_token
from feeds.price_sync import PriceFeed
from services.portfolio_service import PortfolioService
from store.base import Store
from store.notifier import ChangeNotifier
from store.sql_store import SqlStore

_bearer = HTTPBearer()


# ---------------------------------------------------------------------------
# Sesión de base de datos
# ---------------------------------------------------------------------------


async def get_db() -> AsyncIterator[AsyncSession]:
    """Proporciona una sesión SQLAlchemy async con rollback automático ante errores."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


# ---------------------------------------------------------------------------
# Autenticación JWT
# ---------------------------------------------------------------------------


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer),
) -> str:
    """
    Valida el Bearer token JWT y devuelve el id de usuario.
    Lanza 401 si el token es inválido o expirado.
    """
    try:
        return verify_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


# ---------------------------------------------------------------------------
# Colaboradores de larga vida (creados en el lifespan, guardados en app.state)
# ---------------------------------------------------------------------------


def get_notifier(request: Request) -> ChangeNotifier:
    return request.app.state.notifier


def get_price_feed(request: Request) -> PriceFeed:
    return request.app.state.price_feed


def get_store(
    db: AsyncSession = Depends(get_db),
    notifier: ChangeNotifier = Depends(get_notifier),
) -> Store:
    return SqlStore(session=db, notifier=notifier)


def get_portfolio_service(store: Store = Depends(get_store)) -> PortfolioService:
    return PortfolioService(store=store, dead_zone=settings.REBALANCE_DEAD_ZONE)
