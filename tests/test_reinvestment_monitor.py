from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.models import (
    CapitalAllocation,
    ExchangeError,
    ExchangeOrder,
    ExchangeOrderStatus,
    LotSize,
    OrderSide,
    OrderType,
    Trade,
)
from gridbot.domain.strategy import StrategyConfig
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.lot_size_service import LotSizeService
from gridbot.services.order_submission import OrderSubmissionCoordinator
from gridbot.services.reinvestment_monitor import (
    MonitorState,
    ReinvestmentMonitor,
    plan_reinvestment,
)
from fakes import FakeExchange


def _filled_sell(order_id: str = "42", price: str = "84", qty: str = "0.11") -> ExchangeOrder:
    return ExchangeOrder(
        order_id=order_id,
        symbol="LTCUSDC",
        side=OrderSide.SELL,
        status=ExchangeOrderStatus.FILLED,
        price=Decimal(price),
        orig_qty=Decimal(qty),
        executed_qty=Decimal(qty),
        type="LIMIT",
        time=1_700_000_000_000,
    )


@pytest.fixture
def monitor(
    gateway: ExchangeGateway,
    uow_factory: UnitOfWorkFactory,
    lot_sizes: LotSizeService,
    coordinator: OrderSubmissionCoordinator,
    strategy_config: StrategyConfig,
) -> ReinvestmentMonitor:
    return ReinvestmentMonitor(gateway, uow_factory, lot_sizes, coordinator, strategy_config)


@pytest.fixture
def active_grid(uow_factory: UnitOfWorkFactory, fake_exchange: FakeExchange) -> None:
    with uow_factory() as uow:
        uow.capital.upsert(
            CapitalAllocation(
                symbol="LTCUSDC",
                amount=Decimal("100"),
                min_price=Decimal("0"),
                max_price=Decimal("0"),
            )
        )
        uow.capital.try_activate("LTCUSDC")
    fake_exchange.balances["LTC"] = Decimal("1")


def _record_sell(uow_factory: UnitOfWorkFactory, profit: Decimal | None) -> None:
    with uow_factory() as uow:
        uow.trades.insert(
            Trade(
                symbol="LTCUSDC",
                price=Decimal("84"),
                quantity=Decimal("0.11"),
                side=OrderSide.SELL,
                profit=profit,
                order_id="42",
            )
        )


def _capital(uow_factory: UnitOfWorkFactory) -> Decimal:
    with uow_factory() as uow:
        allocation = uow.capital.get("LTCUSDC")
    assert allocation is not None
    return allocation.amount


def test_plan_reinvestment_math() -> None:
    lot = LotSize(min_qty=Decimal("0.01"), step_size=Decimal("0.01"))

    plan = plan_reinvestment(_filled_sell(), lot, StrategyConfig())

    assert plan.profit == Decimal("9.702")
    assert plan.reinvest_capital == Decimal("18.942")
    assert plan.reinvest_price == Decimal("79.80")
    assert plan.reinvest_quantity == Decimal("0.23")
    assert plan.resell_price == Decimal("83.79")
    assert plan.below_min_reason is None


def test_plan_uses_average_price_for_market_sell() -> None:
    lot = LotSize(min_qty=Decimal("0.01"), step_size=Decimal("0.01"))
    market_sell = _filled_sell(price="0").model_copy(
        update={"type": "MARKET", "cumulative_quote_qty": Decimal("9.24")}
    )

    plan = plan_reinvestment(market_sell, lot, StrategyConfig())

    assert plan.sell_price == Decimal("84")
    assert plan.profit == Decimal("9.702")
    assert plan.reinvest_price == Decimal("79.80")


def test_plan_rejects_fill_without_price() -> None:
    lot = LotSize(min_qty=Decimal("0.01"), step_size=Decimal("0.01"))

    with pytest.raises(ValueError):
        plan_reinvestment(_filled_sell(price="0"), lot, StrategyConfig())


def test_plan_rounds_to_tick_size_when_known() -> None:
    lot = LotSize(min_qty=Decimal("1"), step_size=Decimal("1"), tick_size=Decimal("0.0001"))

    plan = plan_reinvestment(_filled_sell(price="0.1575", qty="100"), lot, StrategyConfig())

    assert plan.reinvest_price == Decimal("0.1496")
    assert plan.resell_price == Decimal("0.1570")


@pytest.mark.usefixtures("active_grid")
def test_already_processed_fill_is_not_reprocessed(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=Decimal("9.702"))
    fake_exchange.all_orders["LTCUSDC"] = [_filled_sell("42")]

    summary = monitor.run_pass()

    assert summary.duplicates == 1
    assert summary.reinvested == 0
    assert "place_order" not in fake_exchange.calls
    assert _capital(uow_factory) == Decimal("100")


@pytest.mark.usefixtures("active_grid")
def test_recorded_sell_is_reinvested_exactly_once(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=None)
    fake_exchange.all_orders["LTCUSDC"] = [_filled_sell("42")]

    first = monitor.run_pass()
    second = monitor.run_pass()

    assert first.reinvested == 1
    assert second.duplicates == 1
    assert [(row["side"], row["type"], row["price"], row["quantity"]) for row in fake_exchange.placed] == [
        (OrderSide.BUY, OrderType.LIMIT, Decimal("79.80"), Decimal("0.23")),
        (OrderSide.SELL, OrderType.LIMIT, Decimal("83.79"), Decimal("0.22")),
    ]
    assert _capital(uow_factory) == Decimal("109.702")
    with uow_factory() as uow:
        trade = uow.trades.get_by_order_id("42")
    assert trade is not None and trade.profit == Decimal("9.702")


@pytest.mark.usefixtures("active_grid")
def test_fills_missing_from_the_ledger_are_left_alone(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    old_manual_sell = _filled_sell("7", price="80", qty="1").model_copy(
        update={"time": 1_500_000_000_000}
    )
    fake_exchange.all_orders["LTCUSDC"] = [old_manual_sell]

    first = monitor.run_pass()
    second = monitor.run_pass()

    assert first.untracked == 1
    assert second.untracked == 1
    assert first.reinvested == 0
    assert "place_order" not in fake_exchange.calls
    with uow_factory() as uow:
        assert uow.trades.order_id_exists("7") is False
    assert _capital(uow_factory) == Decimal("100")


@pytest.mark.usefixtures("active_grid")
def test_recorded_buy_with_matching_id_is_not_reinvested(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    with uow_factory() as uow:
        uow.trades.insert(
            Trade(
                symbol="LTCUSDC",
                price=Decimal("80"),
                quantity=Decimal("0.12"),
                side=OrderSide.BUY,
                order_id="42",
            )
        )
    fake_exchange.all_orders["LTCUSDC"] = [_filled_sell("42")]

    summary = monitor.run_pass()

    assert summary.untracked == 1
    assert fake_exchange.placed == []


@pytest.mark.usefixtures("active_grid")
def test_unpriced_fill_is_skipped_once_and_not_retried(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=None)
    fake_exchange.all_orders["LTCUSDC"] = [
        _filled_sell("42", price="0").model_copy(update={"type": "MARKET"})
    ]

    first = monitor.run_pass()
    second = monitor.run_pass()

    assert first.skipped == 1
    assert first.failed == 0
    assert second.duplicates == 1
    assert second.failed == 0
    assert fake_exchange.placed == []
    with uow_factory() as uow:
        trade = uow.trades.get_by_order_id("42")
    assert trade is not None and trade.profit == Decimal("0")
    assert _capital(uow_factory) == Decimal("100")


@pytest.mark.usefixtures("active_grid")
def test_market_sell_is_reinvested_at_its_average_price(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=None)
    fake_exchange.all_orders["LTCUSDC"] = [
        _filled_sell("42", price="0").model_copy(
            update={"type": "MARKET", "cumulative_quote_qty": Decimal("9.24")}
        )
    ]

    summary = monitor.run_pass()

    assert summary.reinvested == 1
    assert fake_exchange.placed[0]["price"] == Decimal("79.80")
    assert _capital(uow_factory) == Decimal("109.702")


@pytest.mark.usefixtures("active_grid")
def test_transient_buy_failure_releases_the_claim(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=None)
    fake_exchange.all_orders["LTCUSDC"] = [_filled_sell("42")]
    fake_exchange.place_errors.append(ExchangeError("timeout", status_code=503))

    first = monitor.run_pass()
    with uow_factory() as uow:
        trade = uow.trades.get_by_order_id("42")
    assert trade is not None and trade.profit is None
    assert _capital(uow_factory) == Decimal("100")

    second = monitor.run_pass()

    assert first.failed == 1
    assert second.reinvested == 1
    assert _capital(uow_factory) == Decimal("109.702")


@pytest.mark.usefixtures("active_grid")
def test_below_minimum_reinvestment_keeps_the_claim(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    _record_sell(uow_factory, profit=None)
    fake_exchange.lot_sizes["LTCUSDC"] = LotSize(min_qty=Decimal("1"), step_size=Decimal("0.01"))
    fake_exchange.all_orders["LTCUSDC"] = [_filled_sell("42")]

    first = monitor.run_pass()
    second = monitor.run_pass()

    assert first.below_min == 1
    assert second.duplicates == 1
    assert "place_order" not in fake_exchange.calls
    assert _capital(uow_factory) == Decimal("100")


@pytest.mark.usefixtures("active_grid")
def test_only_filled_sells_are_processed(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange
) -> None:
    open_sell = _filled_sell("50").model_copy(update={"status": ExchangeOrderStatus.NEW})
    filled_buy = _filled_sell("51").model_copy(update={"side": OrderSide.BUY})
    fake_exchange.all_orders["LTCUSDC"] = [open_sell, filled_buy]

    summary = monitor.run_pass()

    assert summary.fills_seen == 0
    assert fake_exchange.placed == []


def test_inactive_allocations_are_not_polled(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange, uow_factory: UnitOfWorkFactory
) -> None:
    with uow_factory() as uow:
        uow.capital.upsert(
            CapitalAllocation(
                symbol="LTCUSDC", amount=Decimal("100"), min_price=Decimal("0"), max_price=Decimal("0")
            )
        )

    summary = monitor.run_pass()

    assert summary.symbols == []
    assert "get_all_orders" not in fake_exchange.calls


@pytest.mark.usefixtures("active_grid")
def test_poll_failure_does_not_abort_the_pass(
    monitor: ReinvestmentMonitor, fake_exchange: FakeExchange
) -> None:
    fake_exchange.all_orders_error = ExchangeError("down", status_code=502)

    summary = monitor.run_pass()

    assert summary.fills_seen == 0
    assert monitor.state == MonitorState.PROCESSING


def test_run_forever_survives_a_failing_pass_and_honours_stop(
    monitor: ReinvestmentMonitor, monkeypatch: pytest.MonkeyPatch
) -> None:
    stop = threading.Event()
    calls = {"n": 0}

    def _run_pass():
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("unexpected")
        stop.set()

    monkeypatch.setattr(monitor, "run_pass", _run_pass)

    monitor.run_forever(stop)

    assert calls["n"] == 2
    assert monitor.state == MonitorState.STOPPED


def test_start_and_stop_background_thread(
    gateway: ExchangeGateway,
    uow_factory: UnitOfWorkFactory,
    lot_sizes: LotSizeService,
    coordinator: OrderSubmissionCoordinator,
) -> None:
    config = StrategyConfig(monitor_interval_seconds=30.0)
    monitor = ReinvestmentMonitor(gateway, uow_factory, lot_sizes, coordinator, config)

    thread = monitor.start()
    assert thread.daemon is True
    monitor.stop(timeout=5.0)

    assert thread.is_alive() is False
    assert monitor.state == MonitorState.STOPPED
