"""
Adaptador del store sobre SQLAlchemy async (PostgreSQL).

- Los métodos de escritura NO hacen commit: el servicio llama a commit() al final
  de la unidad de trabajo, así transacción + agregado se persisten juntos.
- commit() publica una notificación por cada colección tocada.
- Los errores del driver se traducen a StoreUnavailable (recuperable).
"""

import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from functools import wraps
from typing import Any, TypeVar

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.errors import StoreUnavailable
from models.asset_stat import AssetStat
from models.coin import Coin
from models.transaction import Transaction
from store.base import (
    ASSET_STATS,
    COINS,
    TRANSACTIONS,
    CoinAggregate,
    CoinDescriptor,
    DateRange,
    NewCoin,
    NewTransaction,
    TransactionKind,
    TransactionRecord,
)
from store.notifier import ChangeNotifier

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _wrap_db_errors(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Traduce errores de conexión/driver a StoreUnavailable."""

    @wraps(fn)
    async def wrapper(self: "SqlStore", *args: Any, **kwargs: Any) -> T:
        try:
            return await fn(self, *args, **kwargs)
        except DBAPIError as exc:
            logger.error("store.unavailable", op=fn.__name__, error=str(exc))
            await self.session.rollback()
            raise StoreUnavailable(f"Store no disponible ({fn.__name__})") from exc

    return wrapper


def _as_uuid(value: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _tx_to_record(tx: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=str(tx.id),
        user_id=tx.user_id,
        coin_id=str(tx.coin_id),
        coin_symbol=tx.coin.symbol.upper() if tx.coin else "---",
        kind=TransactionKind(tx.type),
        amount=Decimal(tx.amount),
        price_at_transaction=Decimal(tx.price_at_date),
        created_at=tx.created_at,
        price_at_sale=tx.price_at_sale,
        realized_pnl=tx.realized_pnl,
        avg_cost_at_sale=tx.avg_cost_at_sale,
    )


def _coin_to_descriptor(coin: Coin) -> CoinDescriptor:
    return CoinDescriptor(
        id=str(coin.id),
        user_id=coin.user_id,
        symbol=coin.symbol,
        name=coin.name,
        current_price=Decimal(coin.current_price or 0),
        coingecko_id=coin.coingecko_id,
        wallet_address=coin.wallet_address,
    )


def _stat_to_aggregate(stat: AssetStat) -> CoinAggregate:
    return CoinAggregate(
        coin_id=str(stat.coin_id),
        user_id=stat.user_id,
        total_qty=Decimal(stat.total_qty),
        total_cost=Decimal(stat.total_cost),
        avg_buy_price=Decimal(stat.avg_buy_price),
        target_pct=Decimal(stat.target_pct),
    )


class SqlStore:
    """
    Uso:
        store = SqlStore(session=db, notifier=notifier)
        await store.create_transaction(...)
        await store.commit()
    """

    def __init__(self, session: AsyncSession, notifier: ChangeNotifier | None = None) -> None:
        self.session = session
        self._notifier = notifier
        self._dirty: set[str] = set()

    # -----------------------------------------------------------------------
    # Transacciones
    # -----------------------------------------------------------------------

    @_wrap_db_errors
    async def list_transactions(
        self, user_id: str, date_range: DateRange | None = None
    ) -> list[TransactionRecord]:
        q = (
            select(Transaction)
            .options(selectinload(Transaction.coin))
            .where(Transaction.user_id == user_id)
        )
        if date_range and date_range.start:
            q = q.where(Transaction.created_at >= date_range.start)
        if date_range and date_range.end:
            q = q.where(Transaction.created_at <= date_range.end)
        q = q.order_by(Transaction.created_at)
        rows = (await self.session.execute(q)).scalars().all()
        return [_tx_to_record(tx) for tx in rows]

    @_wrap_db_errors
    async def get_transaction(self, user_id: str, tx_id: str) -> TransactionRecord | None:
        tx_uuid = _as_uuid(tx_id)
        if tx_uuid is None:
            return None
        q = (
            select(Transaction)
            .options(selectinload(Transaction.coin))
            .where(Transaction.id == tx_uuid, Transaction.user_id == user_id)
        )
        tx = (await self.session.execute(q)).scalar_one_or_none()
        return _tx_to_record(tx) if tx else None

    @_wrap_db_errors
    async def create_transaction(self, record: NewTransaction) -> str:
        tx = Transaction(
            id=uuid.uuid4(),
            user_id=record.user_id,
            coin_id=uuid.UUID(record.coin_id),
            type=record.kind.value,
            amount=record.amount,
            price_at_date=record.price_at_transaction,
            price_at_sale=record.price_at_sale,
            realized_pnl=record.realized_pnl,
            avg_cost_at_sale=record.avg_cost_at_sale,
            # Timestamp explícito: now() de Postgres es constante dentro de una transacción
            created_at=datetime.now(timezone.utc),
        )
        self.session.add(tx)
        await self.session.flush()
        self._dirty.add(TRANSACTIONS)
        return str(tx.id)

    @_wrap_db_errors
    async def delete_transaction(self, tx_id: str) -> None:
        await self.session.execute(delete(Transaction).where(Transaction.id == uuid.UUID(tx_id)))
        self._dirty.add(TRANSACTIONS)

    # -----------------------------------------------------------------------
    # Monedas
    # -----------------------------------------------------------------------

    @_wrap_db_errors
    async def list_coins(self, user_id: str | None = None) -> list[CoinDescriptor]:
        q = select(Coin)
        if user_id is not None:
            q = q.where(Coin.user_id == user_id)
        q = q.order_by(Coin.symbol)
        rows = (await self.session.execute(q)).scalars().all()
        return [_coin_to_descriptor(c) for c in rows]

    @_wrap_db_errors
    async def get_coin(self, user_id: str, coin_id: str) -> CoinDescriptor | None:
        coin_uuid = _as_uuid(coin_id)
        if coin_uuid is None:
            return None
        q = select(Coin).where(Coin.id == coin_uuid, Coin.user_id == user_id)
        coin = (await self.session.execute(q)).scalar_one_or_none()
        return _coin_to_descriptor(coin) if coin else None

    @_wrap_db_errors
    async def create_coin(self, coin: NewCoin) -> str:
        row = Coin(
            id=uuid.uuid4(),
            user_id=coin.user_id,
            symbol=coin.symbol,
            name=coin.name,
            coingecko_id=coin.coingecko_id,
            wallet_address=coin.wallet_address,
            current_price=Decimal("0"),
        )
        self.session.add(row)
        await self.session.flush()
        self._dirty.add(COINS)
        return str(row.id)

    @_wrap_db_errors
    async def delete_coin(self, coin_id: str) -> None:
        # Las FKs con ON DELETE CASCADE eliminan sus transacciones y asset_stats
        await self.session.execute(delete(Coin).where(Coin.id == uuid.UUID(coin_id)))
        self._dirty.update({COINS, TRANSACTIONS, ASSET_STATS})

    @_wrap_db_errors
    async def update_coin_price(self, coin_id: str, price: Decimal) -> None:
        coin = await self.session.get(Coin, uuid.UUID(coin_id))
        if coin is None:
            return
        coin.current_price = price
        self._dirty.add(COINS)

    # -----------------------------------------------------------------------
    # Agregados (asset_stats)
    # -----------------------------------------------------------------------

    async def _get_stat(self, user_id: str, coin_id: str, for_update: bool = False) -> AssetStat | None:
        coin_uuid = _as_uuid(coin_id)
        if coin_uuid is None:
            return None
        q = select(AssetStat).where(AssetStat.user_id == user_id, AssetStat.coin_id == coin_uuid)
        if for_update:
            q = q.with_for_update()
        return (await self.session.execute(q)).scalar_one_or_none()

    @_wrap_db_errors
    async def get_coin_aggregate(
        self, user_id: str, coin_id: str, for_update: bool = False
    ) -> CoinAggregate | None:
        """
        for_update: bloquea la fila de la moneda (SELECT ... FOR UPDATE) hasta el commit.
        Serializa las escrituras sobre una misma moneda, incluida la creación de su
        asset_stats, así dos ventas simultáneas no validan contra el mismo saldo.
        """
        if for_update:
            coin_uuid = _as_uuid(coin_id)
            if coin_uuid is None:
                return None
            await self.session.execute(
                select(Coin.id)
                .where(Coin.id == coin_uuid, Coin.user_id == user_id)
                .with_for_update()
            )
        stat = await self._get_stat(user_id, coin_id, for_update=for_update)
        return _stat_to_aggregate(stat) if stat else None

    @_wrap_db_errors
    async def list_coin_aggregates(self, user_id: str) -> list[CoinAggregate]:
        q = select(AssetStat).where(AssetStat.user_id == user_id)
        rows = (await self.session.execute(q)).scalars().all()
        return [_stat_to_aggregate(s) for s in rows]

    @_wrap_db_errors
    async def upsert_coin_aggregate(self, coin_id: str, aggregate: CoinAggregate) -> None:
        stat = await self._get_stat(aggregate.user_id, coin_id)
        if stat is None:
            stat = AssetStat(id=uuid.uuid4(), user_id=aggregate.user_id, coin_id=uuid.UUID(coin_id))
            self.session.add(stat)
        stat.total_qty = aggregate.total_qty
        stat.total_cost = aggregate.total_cost
        stat.avg_buy_price = aggregate.avg_buy_price
        stat.target_pct = aggregate.target_pct
        self._dirty.add(ASSET_STATS)

    @_wrap_db_errors
    async def set_target_pct(self, user_id: str, coin_id: str, target_pct: Decimal) -> None:
        stat = await self._get_stat(user_id, coin_id)
        if stat is None:
            stat = AssetStat(
                id=uuid.uuid4(),
                user_id=user_id,
                coin_id=uuid.UUID(coin_id),
                total_qty=Decimal("0"),
                total_cost=Decimal("0"),
                avg_buy_price=Decimal("0"),
            )
            self.session.add(stat)
        stat.target_pct = target_pct
        self._dirty.add(ASSET_STATS)

    # -----------------------------------------------------------------------
    # Unidad de trabajo
    # -----------------------------------------------------------------------

    @_wrap_db_errors
    async def commit(self) -> None:
        await self.session.commit()
        dirty, self._dirty = self._dirty, set()
        if self._notifier is not None:
            for collection in sorted(dirty):
                self._notifier.publish(collection)
