"""
Motor SQLAlchemy async, fábrica de sesiones y store con sesión propia.

Cada request abre su sesión vía core.dependencies.get_db. Lo que vive fuera de un
request (stream WebSocket, scheduler de precios) abre la suya con sql_store_scope().
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import settings
from store.base import Store
from store.notifier import ChangeNotifier
from store.sql_store import SqlStore

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.APP_ENV == "development",
    pool_pre_ping=True,   # detecta conexiones muertas
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: los registros se convierten a dataclasses después del commit
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def sql_store_scope(notifier: ChangeNotifier | None = None) -> AsyncIterator[Store]:
    """SqlStore sobre una sesión nueva; el lifespan lo publica como app.state.store_scope."""
    async with AsyncSessionLocal() as session:
        yield SqlStore(session=session, notifier=notifier)


async def dispose_engine() -> None:
    """Cierra el pool de conexiones (apagado de la app)."""
    await engine.dispose()
