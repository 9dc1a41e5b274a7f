"""
Tests del servicio de portafolio sobre un FakeStore en memoria.
Cubren el registro/borrado de transacciones, la reconstrucción de agregados
y las lecturas derivadas (overview, plan de rebalanceo).
"""

import asyncio
from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import OTHER_USER, USER, FakeStore
from core.errors import InsufficientQuantity, InvalidInput, NotFound
from services.ledger import replay
from services.portfolio_service import PortfolioService, month_range, validate_trade_input
from services.rebalance import RebalanceAction
from store.base import ASSET_STATS, TRANSACTIONS, CoinAggregate, TransactionKind

BUY = TransactionKind.BUY
SELL = TransactionKind.SELL


@pytest.fixture
def service(store: FakeStore) -> PortfolioService:
    return PortfolioService(store=store, dead_zone=Decimal("100"))


@pytest.fixture
def btc_id(store: FakeStore) -> str:
    return store.seed_coin("btc", price="1000000000", coingecko_id="bitcoin", wallet_address="bc1q-test")


def assert_matches_log(store: FakeStore, coin_id: str) -> None:
    """El agregado guardado coincide con el replay del log que queda."""
    replayed = replay(t for t in store.transactions.values() if t.coin_id == coin_id).positions.get(coin_id)
    agg = store.aggregates[coin_id]
    expected = (replayed.quantity, replayed.cost_basis) if replayed else (Decimal("0"), Decimal("0"))
    assert (agg.total_qty, agg.total_cost) == expected


# ===========================================================================
# Tests: validación de entrada
# ===========================================================================


class TestValidateTradeInput:
    def test_accepts_numeric_strings(self):
        assert validate_trade_input("0.01", "900000000") == (Decimal("0.01"), Decimal("900000000"))

    @pytest.mark.parametrize(
        "amount, price",
        [("abc", "1"), ("1", ""), ("0", "1"), ("-1", "1"), ("1", "0"), ("NaN", "1"), ("1", "Infinity")],
    )
    def test_rejects_invalid_values(self, amount, price):
        with pytest.raises(InvalidInput):
            validate_trade_input(amount, price)


def test_month_range_covers_whole_month():
    window = month_range(date(2024, 2, 10))
    assert window.start == datetime(2024, 2, 1, tzinfo=timezone.utc)
    assert window.end == datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)


# ===========================================================================
# Tests: record_transaction
# ===========================================================================


class TestRecordTransaction:
    async def test_buy_updates_aggregate(self, service, store, btc_id):
        recorded = await service.record_transaction(USER, btc_id, BUY, "0.01", "900000000")

        agg = store.aggregates[btc_id]
        assert recorded.realized_pnl is None
        assert agg.total_qty == Decimal("0.01")
        assert agg.total_cost == Decimal("9000000")
        assert agg.avg_buy_price == Decimal("900000000")
        assert store.commits == 1

    async def test_sell_stores_realized_pnl_and_snapshot(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "0.01", "900000000")
        recorded = await service.record_transaction(USER, btc_id, SELL, "0.005", "1000000000")

        tx = store.transactions[recorded.id]
        assert recorded.realized_pnl == Decimal("500000")
        assert tx.price_at_sale == Decimal("1000000000")
        assert tx.avg_cost_at_sale == Decimal("900000000")
        assert store.aggregates[btc_id].total_cost == Decimal("4500000")

    async def test_oversell_is_rejected_without_writes(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "0.01", "900000000")
        commits_before = store.commits

        with pytest.raises(InsufficientQuantity):
            await service.record_transaction(USER, btc_id, SELL, "0.02", "1000000000")

        assert len(store.transactions) == 1
        assert store.aggregates[btc_id].total_qty == Decimal("0.01")
        assert store.commits == commits_before

    async def test_invalid_amount_is_rejected_before_store(self, service, store, btc_id):
        with pytest.raises(InvalidInput):
            await service.record_transaction(USER, btc_id, BUY, "-1", "100")
        assert store.transactions == {}

    async def test_unknown_coin_raises_not_found(self, service):
        with pytest.raises(NotFound):
            await service.record_transaction(USER, "missing", BUY, "1", "100")

    async def test_coin_of_another_user_is_not_visible(self, service, store):
        foreign = store.seed_coin("eth", user_id=OTHER_USER)
        with pytest.raises(NotFound):
            await service.record_transaction(USER, foreign, BUY, "1", "100")

    async def test_commit_publishes_changed_collections(self, service, store, notifier, btc_id):
        async with notifier.subscribe() as subscription:
            await service.record_transaction(USER, btc_id, BUY, "1", "100")
            assert subscription.pending() == 2
            assert await anext(subscription) == ASSET_STATS
            assert await anext(subscription) == TRANSACTIONS

    async def test_buy_keeps_target_pct(self, service, store, btc_id):
        await service.set_target_pct(USER, btc_id, "40")
        await service.record_transaction(USER, btc_id, BUY, "1", "100")
        assert store.aggregates[btc_id].target_pct == Decimal("40")

    async def test_concurrent_sells_cannot_oversell(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "1", "100")

        outcomes = await asyncio.gather(
            asyncio.create_task(service.record_transaction(USER, btc_id, SELL, "1", "150")),
            asyncio.create_task(service.record_transaction(USER, btc_id, SELL, "1", "160")),
            return_exceptions=True,
        )

        assert sum(isinstance(o, InsufficientQuantity) for o in outcomes) == 1
        assert store.aggregates[btc_id].total_qty == Decimal("0")
        assert sum(t.kind is SELL for t in store.transactions.values()) == 1
        assert_matches_log(store, btc_id)

    async def test_concurrent_buys_are_not_lost(self, service, store, btc_id):
        await asyncio.gather(
            asyncio.create_task(service.record_transaction(USER, btc_id, BUY, "1", "100")),
            asyncio.create_task(service.record_transaction(USER, btc_id, BUY, "1", "300")),
        )

        agg = store.aggregates[btc_id]
        assert (agg.total_qty, agg.total_cost) == (Decimal("2"), Decimal("400"))


# ===========================================================================
# Tests: delete_transaction
# ===========================================================================


class TestDeleteTransaction:
    async def test_deleting_sell_restores_exact_position(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "0.01", "900000000")
        sell = await service.record_transaction(USER, btc_id, SELL, "0.005", "1000000000")

        agg = await service.delete_transaction(USER, sell.id)

        assert agg.total_qty == Decimal("0.01")
        assert agg.total_cost == Decimal("9000000")
        assert sell.id not in store.transactions

    async def test_deleting_buy_reverses_it(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "1", "100")
        second = await service.record_transaction(USER, btc_id, BUY, "1", "300")

        agg = await service.delete_transaction(USER, second.id)

        assert agg.total_qty == Decimal("1")
        assert agg.avg_buy_price == Decimal("100")

    async def test_deleting_sold_buy_is_rejected(self, service, store, btc_id):
        buy = await service.record_transaction(USER, btc_id, BUY, "1", "100")
        await service.record_transaction(USER, btc_id, SELL, "0.8", "150")

        with pytest.raises(InsufficientQuantity):
            await service.delete_transaction(USER, buy.id)
        assert buy.id in store.transactions

    async def test_sell_without_snapshot_rebuilds_from_log(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "2", "100")
        sell = await service.record_transaction(USER, btc_id, SELL, "1", "200")
        # Venta antigua sin avg_cost_at_sale
        legacy = store.transactions[sell.id]
        store.transactions[sell.id] = replace(legacy, avg_cost_at_sale=None)

        agg = await service.delete_transaction(USER, sell.id)

        assert agg.total_qty == Decimal("2")
        assert agg.total_cost == Decimal("200")

    async def test_missing_transaction_raises_not_found(self, service):
        with pytest.raises(NotFound):
            await service.delete_transaction(USER, "nope")

    async def test_deleting_older_buy_replays_later_sells(self, service, store, btc_id):
        first = await service.record_transaction(USER, btc_id, BUY, "1", "100")
        await service.record_transaction(USER, btc_id, BUY, "1", "200")
        await service.record_transaction(USER, btc_id, SELL, "1", "300")

        agg = await service.delete_transaction(USER, first.id)

        assert (agg.total_qty, agg.total_cost) == (Decimal("0"), Decimal("0"))
        assert_matches_log(store, btc_id)

    async def test_deleting_older_sell_replays_later_trades(self, service, store, btc_id):
        await service.record_transaction(USER, btc_id, BUY, "2", "100")
        first_sell = await service.record_transaction(USER, btc_id, SELL, "1", "150")
        await service.record_transaction(USER, btc_id, BUY, "1", "400")
        await service.record_transaction(USER, btc_id, SELL, "1", "500")

        agg = await service.delete_transaction(USER, first_sell.id)

        assert (agg.total_qty, agg.total_cost) == (Decimal("2"), Decimal("400"))
        assert agg.avg_buy_price == Decimal("200")
        assert_matches_log(store, btc_id)

    async def test_deleting_older_transaction_keeps_target_pct(self, service, store, btc_id):
        first = await service.record_transaction(USER, btc_id, BUY, "1", "100")
        await service.record_transaction(USER, btc_id, BUY, "1", "200")
        await service.set_target_pct(USER, btc_id, "30")

        agg = await service.delete_transaction(USER, first.id)

        assert agg.target_pct == Decimal("30")
        assert_matches_log(store, btc_id)

    async def test_delete_locks_coin_aggregate(self, service, store, btc_id):
        buy = await service.record_transaction(USER, btc_id, BUY, "1", "100")
        store.lock_requests.clear()

        await service.delete_transaction(USER, buy.id)

        assert store.lock_requests == [btc_id]


# ===========================================================================
# Tests: rebuild_aggregates
# ===========================================================================


async def test_rebuild_detects_and_fixes_drift(service, store, btc_id):
    await service.record_transaction(USER, btc_id, BUY, "1", "100")
    await service.set_target_pct(USER, btc_id, "25")
    store.aggregates[btc_id] = CoinAggregate(
        coin_id=btc_id,
        user_id=USER,
        total_qty=Decimal("5"),
        total_cost=Decimal("1"),
        avg_buy_price=Decimal("0.2"),
        target_pct=Decimal("25"),
    )

    report = await service.rebuild_aggregates(USER)

    assert report.coins_rebuilt == 1
    assert report.drifted == ["BTC"]
    assert store.aggregates[btc_id].total_qty == Decimal("1")
    assert store.aggregates[btc_id].target_pct == Decimal("25")


async def test_rebuild_without_drift_reports_nothing(service, store, btc_id):
    await service.record_transaction(USER, btc_id, BUY, "1", "100")
    report = await service.rebuild_aggregates(USER)
    assert report.drifted == []
    assert report.gaps == []


# ===========================================================================
# Tests: lecturas derivadas
# ===========================================================================


async def test_overview_uses_live_prices_and_lifetime_realized(service, store, btc_id):
    await service.record_transaction(USER, btc_id, BUY, "0.01", "900000000")
    await service.record_transaction(USER, btc_id, SELL, "0.005", "1000000000")

    overview = await service.get_overview(USER)
    row = overview.valuation.rows[0]

    assert row.symbol == "BTC"
    assert row.quantity == Decimal("0.005")
    assert row.market_value == Decimal("5000000")
    assert row.unrealized_pnl == Decimal("500000")
    assert overview.realized_pnl == Decimal("500000")
    assert overview.address_book[0].wallet_address == "bc1q-test"


async def test_overview_keeps_realized_after_full_exit(service, store, btc_id):
    await service.record_transaction(USER, btc_id, BUY, "1", "100")
    await service.record_transaction(USER, btc_id, SELL, "1", "150")

    overview = await service.get_overview(USER)

    assert overview.valuation.rows == []
    assert overview.realized_pnl == Decimal("50")


async def test_rebalance_plan_from_aggregates(service, store):
    btc = store.seed_coin("btc", price="1000000000")
    eth = store.seed_coin("eth", price="10000000")
    await service.record_transaction(USER, btc, BUY, "1", "900000000")
    await service.record_transaction(USER, eth, BUY, "100", "9000000")
    await service.set_target_pct(USER, btc, "50")
    await service.set_target_pct(USER, eth, "50")

    plan = await service.get_rebalance_plan(USER)

    assert plan.target_sum_ok
    assert {r.symbol for r in plan.recommendations} == {"BTC", "ETH"}
    assert all(r.action is RebalanceAction.ON_TARGET for r in plan.recommendations)


async def test_rebalance_plan_skips_empty_positions(service, store, btc_id):
    await service.set_target_pct(USER, btc_id, "100")
    plan = await service.get_rebalance_plan(USER, "1000")
    assert plan.recommendations == []


@pytest.mark.parametrize("pct", ["-1", "100.5", "abc"])
async def test_set_target_pct_rejects_out_of_range(service, btc_id, pct):
    with pytest.raises(InvalidInput):
        await service.set_target_pct(USER, btc_id, pct)


# ===========================================================================
# Tests: monedas
# ===========================================================================


async def test_add_coin_normalizes_and_starts_at_zero(service, store):
    coin = await service.add_coin(USER, " sol ", " Solana ", wallet_address="  ")

    assert coin.symbol == "sol"
    assert coin.coingecko_id == "solana"
    assert coin.name == "solana"
    assert coin.wallet_address is None
    assert coin.current_price == Decimal("0")


async def test_add_coin_requires_symbol(service):
    with pytest.raises(InvalidInput):
        await service.add_coin(USER, "", "bitcoin")


async def test_remove_coin_drops_history(service, store, btc_id):
    await service.record_transaction(USER, btc_id, BUY, "1", "100")
    await service.remove_coin(USER, btc_id)

    assert store.coins == {}
    assert store.transactions == {}
    assert store.aggregates == {}
