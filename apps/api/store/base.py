"""
Contrato del store (colaborador externo): registros que entrega y escrituras que acepta.

Los servicios reciben un Store explícito en el constructor; no hay cliente global.
La implementación real es store.sql_store.SqlStore; los tests usan un fake en memoria.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol

# Colecciones que emiten notificaciones de cambio
COINS = "coins"
TRANSACTIONS = "transactions"
ASSET_STATS = "asset_stats"
COLLECTIONS = (COINS, TRANSACTIONS, ASSET_STATS)


class TransactionKind(str, enum.Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class DateRange:
    start: datetime | None = None
    end: datetime | None = None


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    user_id: str
    coin_id: str
    coin_symbol: str
    kind: TransactionKind
    amount: Decimal
    price_at_transaction: Decimal
    created_at: datetime
    price_at_sale: Decimal | None = None
    realized_pnl: Decimal | None = None
    avg_cost_at_sale: Decimal | None = None


@dataclass(frozen=True)
class NewTransaction:
    user_id: str
    coin_id: str
    kind: TransactionKind
    amount: Decimal
    price_at_transaction: Decimal
    price_at_sale: Decimal | None = None
    realized_pnl: Decimal | None = None
    avg_cost_at_sale: Decimal | None = None


@dataclass(frozen=True)
class CoinDescriptor:
    id: str
    user_id: str
    symbol: str
    name: str
    current_price: Decimal = Decimal("0")
    coingecko_id: str | None = None
    wallet_address: str | None = None

    @property
    def price_feed_id(self) -> str:
        """Id para CoinGecko: coingecko_id o, si falta, el nombre en minúsculas con guiones."""
        if self.coingecko_id:
            return self.coingecko_id
        return "-".join(self.name.lower().split())


@dataclass(frozen=True)
class NewCoin:
    user_id: str
    symbol: str
    name: str
    coingecko_id: str | None = None
    wallet_address: str | None = None


@dataclass(frozen=True)
class CoinAggregate:
    coin_id: str
    user_id: str
    total_qty: Decimal
    total_cost: Decimal
    avg_buy_price: Decimal
    target_pct: Decimal = Decimal("0")


class Store(Protocol):
    async def list_transactions(
        self, user_id: str, date_range: DateRange | None = None
    ) -> list[TransactionRecord]: ...

    async def get_transaction(self, user_id: str, tx_id: str) -> TransactionRecord | None: ...

    async def create_transaction(self, record: NewTransaction) -> str: ...

    async def delete_transaction(self, tx_id: str) -> None: ...

    async def list_coins(self, user_id: str | None = None) -> list[CoinDescriptor]: ...

    async def get_coin(self, user_id: str, coin_id: str) -> CoinDescriptor | None: ...

    async def create_coin(self, coin: NewCoin) -> str: ...

    async def delete_coin(self, coin_id: str) -> None: ...

    async def update_coin_price(self, coin_id: str, price: Decimal) -> None: ...

    async def get_coin_aggregate(
        self, user_id: str, coin_id: str, for_update: bool = False
    ) -> CoinAggregate | None: ...

    async def list_coin_aggregates(self, user_id: str) -> list[CoinAggregate]: ...

    async def upsert_coin_aggregate(self, coin_id: str, aggregate: CoinAggregate) -> None: ...

    async def set_target_pct(self, user_id: str, coin_id: str, target_pct: Decimal) -> None: ...

    async def commit(self) -> None: ...
