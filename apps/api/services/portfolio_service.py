"""
Servicio del portafolio: orquesta store + ledger + proyecciones.

Reglas críticas:
- NUNCA float para datos de negocio: siempre Decimal.
- El log de transacciones es la fuente de verdad; asset_stats es una proyección
  que se actualiza con las mismas funciones del ledger y se puede reconstruir.
- Las ventas guardan avg_cost_at_sale para poder revertirlas exactamente al borrarlas.
- Toda validación ocurre ANTES de escribir: una venta rechazada no deja rastro.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

import structlog

from core.errors import InsufficientQuantity, InvalidInput, NotFound
from services.ledger import (
    EPSILON,
    ZERO,
    CoinPosition,
    aggregate_from_position,
    apply_buy,
    apply_sell,
    position_from_aggregate,
    replay,
    reverse_buy,
    reverse_sell,
)
from services.rebalance import (
    DEFAULT_DEAD_ZONE,
    RebalancePlan,
    RebalanceTarget,
    compute_rebalance,
)
from services.valuation import PortfolioValuation, project_valuation, sum_realized_pnl
from store.base import (
    CoinAggregate,
    CoinDescriptor,
    DateRange,
    NewCoin,
    NewTransaction,
    Store,
    TransactionKind,
    TransactionRecord,
)

logger = structlog.get_logger(__name__)

HUNDRED = Decimal("100")


# ---------------------------------------------------------------------------
# Tipos de retorno
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecordedTransaction:
    id: str
    kind: TransactionKind
    realized_pnl: Decimal | None
    position: CoinPosition


@dataclass(frozen=True)
class AddressBookEntry:
    symbol: str
    wallet_address: str | None


@dataclass(frozen=True)
class PortfolioOverview:
    valuation: PortfolioValuation
    realized_pnl: Decimal
    address_book: list[AddressBookEntry]
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class RebuildReport:
    coins_rebuilt: int = 0
    drifted: list[str] = field(default_factory=list)   # símbolos cuyo agregado no cuadraba
    gaps: list[str] = field(default_factory=list)      # ids de ventas sin saldo suficiente


# ---------------------------------------------------------------------------
# Helpers puros
# ---------------------------------------------------------------------------


def _to_decimal(value: object, field_name: str) -> Decimal:
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidInput(f"{field_name} no es numérico: {value!r}") from exc
    if not result.is_finite():
        raise InvalidInput(f"{field_name} debe ser un número finito")
    return result


def validate_trade_input(amount: object, price: object) -> tuple[Decimal, Decimal]:
    """Convierte y valida amount/price. Ambos deben ser numéricos, finitos y > 0."""
    amount_dec = _to_decimal(amount, "amount")
    price_dec = _to_decimal(price, "price")
    if amount_dec <= ZERO:
        raise InvalidInput("amount debe ser mayor que 0")
    if price_dec <= ZERO:
        raise InvalidInput("price debe ser mayor que 0")
    return amount_dec, price_dec


def month_range(today: date) -> DateRange:
    """Filtro "este mes": del día 1 00:00:00 al último día 23:59:59 (UTC)."""
    last_day = calendar.monthrange(today.year, today.month)[1]
    return DateRange(
        start=datetime(today.year, today.month, 1, 0, 0, 0, tzinfo=timezone.utc),
        end=datetime(today.year, today.month, last_day, 23, 59, 59, tzinfo=timezone.utc),
    )


# ---------------------------------------------------------------------------
# Servicio
# ---------------------------------------------------------------------------


class PortfolioService:
    """
    Uso:
        service = PortfolioService(store=SqlStore(session, notifier))
        await service.record_transaction(user_id, coin_id, TransactionKind.BUY, "0.01", "900000000")

    El store se inyecta explícitamente (no hay cliente global de backend).
    """

    def __init__(self, store: Store, dead_zone: Decimal = DEFAULT_DEAD_ZONE) -> None:
        self.store = store
        self.dead_zone = dead_zone

    async def _require_coin(self, user_id: str, coin_id: str) -> CoinDescriptor:
        coin = await self.store.get_coin(user_id, coin_id)
        if coin is None:
            raise NotFound(f"Moneda {coin_id} no encontrada")
        return coin

    # -----------------------------------------------------------------------
    # Transacciones
    # -----------------------------------------------------------------------

    async def record_transaction(
        self,
        user_id: str,
        coin_id: str,
        kind: TransactionKind,
        amount: object,
        price: object,
    ) -> RecordedTransaction:
        """
        Registra una compra o venta y actualiza el agregado de la moneda.
        Venta: price es el precio de venta; se guardan realized_pnl y avg_cost_at_sale.
        """
        amount_dec, price_dec = validate_trade_input(amount, price)
        coin = await self._require_coin(user_id, coin_id)
        aggregate = await self.store.get_coin_aggregate(user_id, coin_id, for_update=True)
        position = position_from_aggregate(aggregate, coin.id, coin.symbol.upper(), coin.current_price)
        log = logger.bind(user_id=user_id, symbol=position.symbol, kind=kind.value)

        if kind is TransactionKind.BUY:
            apply_buy(position, amount_dec, price_dec)
            realized = None
            new_tx = NewTransaction(
                user_id=user_id,
                coin_id=coin.id,
                kind=kind,
                amount=amount_dec,
                price_at_transaction=price_dec,
            )
        else:
            try:
                sell = apply_sell(position, amount_dec, price_dec)
            except InsufficientQuantity:
                log.info("transactions.rejected_oversell", amount=str(amount_dec), held=str(position.quantity))
                raise
            realized = sell.realized_pnl
            new_tx = NewTransaction(
                user_id=user_id,
                coin_id=coin.id,
                kind=kind,
                amount=amount_dec,
                price_at_transaction=price_dec,
                price_at_sale=price_dec,
                realized_pnl=sell.realized_pnl,
                avg_cost_at_sale=sell.avg_cost,
            )

        tx_id = await self.store.create_transaction(new_tx)
        target_pct = aggregate.target_pct if aggregate else ZERO
        await self.store.upsert_coin_aggregate(
            coin.id, aggregate_from_position(position, user_id, target_pct)
        )
        await self.store.commit()

        log.info(
            "transactions.recorded",
            tx_id=tx_id,
            amount=str(amount_dec),
            price=str(price_dec),
            realized_pnl=str(realized) if realized is not None else None,
        )
        return RecordedTransaction(id=tx_id, kind=kind, realized_pnl=realized, position=position)

    async def delete_transaction(self, user_id: str, tx_id: str) -> CoinAggregate:
        """
        Borra una transacción y deja el agregado igual al replay del log restante.
        Si es la última de su moneda (orden created_at, id) se revierte en el sitio:
        - Compra: reverse_buy. Se rechaza si esa cantidad ya se vendió.
        - Venta: reverse_sell con el avg_cost_at_sale guardado.
        En cualquier otro caso (transacción intermedia, venta sin snapshot o agregado
        inexistente) se reconstruye la moneda desde el log. Se rechaza el borrado si
        deja alguna venta posterior sin saldo suficiente.
        """
        tx = await self.store.get_transaction(user_id, tx_id)
        if tx is None:
            raise NotFound(f"Transacción {tx_id} no encontrada")

        aggregate = await self.store.get_coin_aggregate(user_id, tx.coin_id, for_update=True)
        log = logger.bind(user_id=user_id, tx_id=tx_id, symbol=tx.coin_symbol, kind=tx.kind.value)

        coin_history = [t for t in await self.store.list_transactions(user_id) if t.coin_id == tx.coin_id]
        newest = max(coin_history, key=lambda t: (t.created_at, t.id), default=tx)

        if aggregate is None or (tx.kind is TransactionKind.SELL and tx.avg_cost_at_sale is None):
            reason = "missing_snapshot_or_aggregate"
        elif newest.id != tx.id:
            reason = "not_latest"
        else:
            reason = None

        if reason is not None:
            log.info("transactions.delete_rebuild", reason=reason)
            remaining = [t for t in coin_history if t.id != tx.id]
            before = replay(coin_history)
            after = replay(remaining)
            new_gaps = set(after.gaps) - set(before.gaps)
            if new_gaps:
                held = aggregate.total_qty if aggregate else ZERO
                log.info("transactions.rejected_delete_buy", held=str(held), orphaned_sells=sorted(new_gaps))
                raise InsufficientQuantity(tx.amount, held, tx.coin_symbol)
            coin = await self.store.get_coin(user_id, tx.coin_id)
            symbol = coin.symbol.upper() if coin else tx.coin_symbol
            rebuilt = after.positions.get(tx.coin_id) or CoinPosition(coin_id=tx.coin_id, symbol=symbol)
            target_pct = aggregate.target_pct if aggregate else ZERO
            new_aggregate = aggregate_from_position(rebuilt, user_id, target_pct)
        else:
            position = position_from_aggregate(aggregate, tx.coin_id, tx.coin_symbol)
            if tx.kind is TransactionKind.BUY:
                if position.quantity - tx.amount < -EPSILON:
                    log.info("transactions.rejected_delete_buy", held=str(position.quantity))
                    raise InsufficientQuantity(tx.amount, position.quantity, tx.coin_symbol)
                reverse_buy(position, tx.amount, tx.price_at_transaction)
            else:
                reverse_sell(position, tx.amount, tx.avg_cost_at_sale)
            new_aggregate = aggregate_from_position(position, user_id, aggregate.target_pct)

        await self.store.delete_transaction(tx.id)
        await self.store.upsert_coin_aggregate(tx.coin_id, new_aggregate)
        await self.store.commit()
        log.info("transactions.deleted", total_qty=str(new_aggregate.total_qty))
        return new_aggregate

    async def list_transactions(
        self, user_id: str, date_range: DateRange | None = None
    ) -> list[TransactionRecord]:
        """Historial del usuario, más reciente primero."""
        history = await self.store.list_transactions(user_id, date_range)
        return sorted(history, key=lambda t: (t.created_at, t.id), reverse=True)

    async def rebuild_aggregates(self, user_id: str) -> RebuildReport:
        """
        Reconstruye todos los asset_stats del usuario reproduciendo el log completo.
        Conserva target_pct. Registra como drift cualquier agregado que no cuadrase.
        """
        coins = await self.store.list_coins(user_id)
        history = await self.store.list_transactions(user_id)
        existing = {a.coin_id: a for a in await self.store.list_coin_aggregates(user_id)}
        result = replay(history)
        report = RebuildReport(gaps=list(result.gaps))

        for coin in coins:
            position = result.positions.get(coin.id) or CoinPosition(
                coin_id=coin.id, symbol=coin.symbol.upper()
            )
            previous = existing.get(coin.id)
            target_pct = previous.target_pct if previous else ZERO
            rebuilt = aggregate_from_position(position, user_id, target_pct)
            if previous is not None and (
                abs(previous.total_qty - rebuilt.total_qty) > EPSILON
                or abs(previous.total_cost - rebuilt.total_cost) > EPSILON
            ):
                report.drifted.append(coin.symbol.upper())
            await self.store.upsert_coin_aggregate(coin.id, rebuilt)
            report.coins_rebuilt += 1

        await self.store.commit()
        if report.drifted:
            logger.warning("ledger.aggregate_drift", user_id=user_id, symbols=report.drifted)
        logger.info(
            "ledger.rebuild_complete",
            user_id=user_id,
            coins=report.coins_rebuilt,
            gaps=len(report.gaps),
        )
        return report

    # -----------------------------------------------------------------------
    # Lecturas derivadas
    # -----------------------------------------------------------------------

    async def get_overview(self, user_id: str) -> PortfolioOverview:
        """
        Recalcula el portafolio desde cero: replay del log con los precios vivos de
        cada moneda, proyección de valoración y P&L realizado de por vida.
        """
        coins = await self.store.list_coins(user_id)
        history = await self.store.list_transactions(user_id)
        prices = {c.id: c.current_price for c in coins}

        result = replay(history, prices)
        valuation = project_valuation(result.positions.values())

        wallets = {c.id: c.wallet_address for c in coins}
        address_book = [
            AddressBookEntry(symbol=row.symbol, wallet_address=wallets.get(row.coin_id))
            for row in valuation.rows
        ]
        return PortfolioOverview(
            valuation=valuation,
            realized_pnl=sum_realized_pnl(history),
            address_book=address_book,
        )

    async def get_rebalance_plan(self, user_id: str, injection: object = ZERO) -> RebalancePlan:
        injection_dec = _to_decimal(injection, "injection")
        coins = {c.id: c for c in await self.store.list_coins(user_id)}
        aggregates = await self.store.list_coin_aggregates(user_id)

        targets: list[RebalanceTarget] = []
        for agg in aggregates:
            coin = coins.get(agg.coin_id)
            if coin is None or agg.total_qty <= ZERO:
                continue
            targets.append(
                RebalanceTarget(
                    symbol=coin.symbol.upper(),
                    coin_id=coin.id,
                    quantity=agg.total_qty,
                    target_pct=agg.target_pct,
                    current_value=agg.total_qty * coin.current_price,
                    live_price=coin.current_price,
                )
            )
        targets.sort(key=lambda t: (-t.current_value, t.symbol))
        plan = compute_rebalance(targets, injection=injection_dec, dead_zone=self.dead_zone)
        if not plan.target_sum_ok:
            logger.info(
                "rebalance.target_sum_mismatch",
                user_id=user_id,
                total_target_pct=str(plan.total_target_pct),
            )
        return plan

    async def set_target_pct(self, user_id: str, coin_id: str, target_pct: object) -> Decimal:
        pct = _to_decimal(target_pct, "target_pct")
        if pct < ZERO or pct > HUNDRED:
            raise InvalidInput("target_pct debe estar entre 0 y 100")
        await self._require_coin(user_id, coin_id)
        await self.store.set_target_pct(user_id, coin_id, pct)
        await self.store.commit()
        return pct

    # -----------------------------------------------------------------------
    # Monedas
    # -----------------------------------------------------------------------

    async def list_coins(self, user_id: str) -> list[CoinDescriptor]:
        return await self.store.list_coins(user_id)

    async def add_coin(
        self,
        user_id: str,
        symbol: str,
        coingecko_id: str,
        wallet_address: str | None = None,
    ) -> CoinDescriptor:
        """Registra una moneda. El nombre se toma del id de CoinGecko; precio y objetivo arrancan en 0."""
        symbol = (symbol or "").strip()
        cg_id = (coingecko_id or "").strip().lower()
        if not symbol:
            raise InvalidInput("symbol es obligatorio")
        if not cg_id:
            raise InvalidInput("coingecko_id es obligatorio")

        coin_id = await self.store.create_coin(
            NewCoin(
                user_id=user_id,
                symbol=symbol,
                name=cg_id,
                coingecko_id=cg_id,
                wallet_address=(wallet_address or "").strip() or None,
            )
        )
        await self.store.commit()
        logger.info("coins.created", user_id=user_id, coin_id=coin_id, symbol=symbol)
        return await self._require_coin(user_id, coin_id)

    async def remove_coin(self, user_id: str, coin_id: str) -> None:
        """Borra la moneda junto con sus transacciones y su agregado."""
        coin = await self._require_coin(user_id, coin_id)
        await self.store.delete_coin(coin.id)
        await self.store.commit()
        logger.info("coins.deleted", user_id=user_id, coin_id=coin.id, symbol=coin.symbol)
