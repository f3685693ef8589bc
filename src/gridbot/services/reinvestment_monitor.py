from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum
from uuid import uuid4

from gridbot.adapters.binance_http import ConfigurationError
from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.models import ExchangeOrder, LotSize, OrderSide
from gridbot.domain.quantity import check_min_quantity, normalize_quantity, quantize_price
from gridbot.domain.strategy import StrategyConfig
from gridbot.logging_context import with_logging_context, with_pass_context
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.lot_size_service import LotSizeService
from gridbot.services.order_submission import OrderSubmissionCoordinator

logger = logging.getLogger(__name__)


class MonitorState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    PROCESSING = "processing"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ReinvestmentPlan:
    sell_order_id: str
    symbol: str
    sell_price: Decimal
    quantity: Decimal
    profit: Decimal
    reinvest_capital: Decimal
    reinvest_price: Decimal
    reinvest_quantity: Decimal
    resell_price: Decimal
    below_min_reason: str | None = None


@dataclass
class PassSummary:
    pass_id: str
    symbols: list[str] = field(default_factory=list)
    fills_seen: int = 0
    reinvested: int = 0
    duplicates: int = 0
    untracked: int = 0
    skipped: int = 0
    below_min: int = 0
    failed: int = 0


def plan_reinvestment(
    order: ExchangeOrder, lot_size: LotSize, config: StrategyConfig
) -> ReinvestmentPlan:
    """Compute the rebuy and resell for one filled sell.

    ``profit = price * qty * (1 + margin)`` and the rebuy spends the sale
    proceeds plus that profit at a discounted price.
    """
    quantity = order.executed_qty if order.executed_qty > 0 else order.orig_qty
    sell_price = order.fill_price
    if sell_price <= 0 or quantity <= 0:
        raise ValueError(
            f"filled sell {order.order_id} has no usable price/quantity: "
            f"price={sell_price} qty={quantity}"
        )
    proceeds = sell_price * quantity
    profit = proceeds * (Decimal("1") + config.reinvest_margin)
    reinvest_capital = proceeds + profit
    reinvest_price = quantize_price(
        sell_price * (Decimal("1") - config.rebuy_discount),
        config.price_decimals,
        lot_size.tick_size,
    )
    if reinvest_price <= 0:
        raise ValueError(f"reinvest price collapsed to {reinvest_price} for {order.order_id}")
    reinvest_quantity = normalize_quantity(reinvest_capital / reinvest_price, lot_size.step_size)
    check = check_min_quantity(reinvest_quantity, lot_size.min_qty)
    resell_price = quantize_price(
        reinvest_price * (Decimal("1") + config.resell_markup),
        config.price_decimals,
        lot_size.tick_size,
    )
    return ReinvestmentPlan(
        sell_order_id=order.order_id,
        symbol=order.symbol,
        sell_price=sell_price,
        quantity=quantity,
        profit=profit,
        reinvest_capital=reinvest_capital,
        reinvest_price=reinvest_price,
        reinvest_quantity=reinvest_quantity,
        resell_price=resell_price,
        below_min_reason=None if check.ok else check.reason,
    )


class ReinvestmentMonitor:
    """Polls filled sells of active grids and recycles the proceeds into new orders."""

    def __init__(
        self,
        gateway: ExchangeGateway,
        uow_factory: UnitOfWorkFactory,
        lot_sizes: LotSizeService,
        coordinator: OrderSubmissionCoordinator,
        config: StrategyConfig,
        *,
        stop_event: threading.Event | None = None,
        run_id: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.lot_sizes = lot_sizes
        self.coordinator = coordinator
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.run_id = run_id or uuid4().hex[:12]
        self.state = MonitorState.IDLE
        self._thread: threading.Thread | None = None

    def _active_symbols(self) -> list[str]:
        with self.uow_factory() as uow:
            return [allocation.symbol for allocation in uow.capital.list_active()]

    def poll_filled_sells(self, symbols: list[str]) -> list[ExchangeOrder]:
        self.state = MonitorState.POLLING
        filled: list[ExchangeOrder] = []
        for symbol in symbols:
            result = self.gateway.all_orders(symbol)
            if not result.ok or result.value is None:
                logger.warning(
                    "monitor_poll_failed", extra={"extra": {"symbol": symbol, "reason": result.reason}}
                )
                continue
            filled.extend(order for order in result.value if order.is_filled_sell)
        return filled

    def run_pass(self) -> PassSummary:
        summary = PassSummary(pass_id=uuid4().hex[:12])
        with with_pass_context(summary.pass_id, run_id=self.run_id):
            summary.symbols = self._active_symbols()
            filled = self.poll_filled_sells(summary.symbols)
            summary.fills_seen = len(filled)

            self.state = MonitorState.PROCESSING
            for order in filled:
                if self.stop_event.is_set():
                    break
                try:
                    outcome = self.process_fill(order)
                except ConfigurationError:
                    raise
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "monitor_fill_failed", extra={"extra": {"order_id": order.order_id}}
                    )
                    summary.failed += 1
                    continue
                if outcome == "reinvested":
                    summary.reinvested += 1
                elif outcome == "duplicate":
                    summary.duplicates += 1
                elif outcome == "untracked":
                    summary.untracked += 1
                elif outcome == "skipped":
                    summary.skipped += 1
                elif outcome == "below_min":
                    summary.below_min += 1
                else:
                    summary.failed += 1

            logger.info(
                "monitor_pass_completed",
                extra={
                    "extra": {
                        "symbols": summary.symbols,
                        "fills_seen": summary.fills_seen,
                        "reinvested": summary.reinvested,
                        "duplicates": summary.duplicates,
                        "untracked": summary.untracked,
                        "skipped": summary.skipped,
                        "below_min": summary.below_min,
                        "failed": summary.failed,
                    }
                },
            )
        return summary

    def process_fill(self, order: ExchangeOrder) -> str:
        """Handle one filled sell.

        Only sells this engine recorded in the trades ledger are reinvested;
        anything else in the exchange history is reported as ``untracked``.
        Returns reinvested, duplicate, untracked, skipped, below_min or failed.
        """
        symbol = order.symbol
        with with_logging_context(order_id=order.order_id, symbol=symbol):
            with self.uow_factory() as uow:
                recorded = uow.trades.get_by_order_id(order.order_id)
            if recorded is None or recorded.side != OrderSide.SELL:
                logger.debug("fill_not_tracked")
                return "untracked"
            if recorded.profit is not None:
                logger.debug("fill_already_processed")
                return "duplicate"

            lot_size = self.lot_sizes.get_lot_size(symbol)
            try:
                plan = plan_reinvestment(order, lot_size, self.config)
            except ValueError as exc:
                # claimed with zero profit so later passes do not retry it
                with self.uow_factory() as uow:
                    claimed = uow.trades.claim_fill(order.order_id, Decimal("0"))
                logger.warning(
                    "reinvest_skipped_unpriced",
                    extra={
                        "extra": {
                            "reason": str(exc),
                            "order_type": order.type,
                            "claimed": claimed,
                        }
                    },
                )
                return "skipped" if claimed else "duplicate"

            with self.uow_factory() as uow:
                claimed = uow.trades.claim_fill(order.order_id, plan.profit)
            if not claimed:
                logger.debug("fill_already_processed")
                return "duplicate"

            if plan.below_min_reason is not None:
                logger.warning(
                    "reinvest_skipped_below_min",
                    extra={
                        "extra": {
                            "reinvest_quantity": str(plan.reinvest_quantity),
                            "reason": plan.below_min_reason,
                        }
                    },
                )
                return "below_min"

            buy = self.coordinator.submit(
                symbol,
                OrderSide.BUY,
                plan.reinvest_price,
                plan.reinvest_quantity,
                False,
                lot_size=lot_size,
            )
            if not buy.accepted:
                keep_claim = (buy.reason or "").startswith("below_min_qty")
                if not keep_claim:
                    self._release(order.order_id)
                logger.warning(
                    "reinvest_buy_failed",
                    extra={"extra": {"reason": buy.reason, "claim_released": not keep_claim}},
                )
                return "below_min" if keep_claim else "failed"

            sell = self.coordinator.submit(
                symbol,
                OrderSide.SELL,
                plan.resell_price,
                buy.quantity,
                False,
                lot_size=lot_size,
            )
            if not sell.ok:
                logger.warning(
                    "reinvest_resell_failed",
                    extra={"extra": {"reason": sell.reason, "buy_order_id": buy.order_id}},
                )

            with self.uow_factory() as uow:
                new_amount = uow.capital.add_amount(symbol, plan.profit)
            logger.info(
                "capital_recycled",
                extra={
                    "extra": {
                        "sell_price": str(plan.sell_price),
                        "quantity": str(plan.quantity),
                        "profit": str(plan.profit),
                        "reinvest_price": str(plan.reinvest_price),
                        "reinvest_quantity": str(plan.reinvest_quantity),
                        "resell_price": str(plan.resell_price),
                        "capital_amount": str(new_amount) if new_amount is not None else None,
                        "config_version": self.config.version,
                    }
                },
            )
            return "reinvested"

    def _release(self, order_id: str) -> None:
        with self.uow_factory() as uow:
            uow.trades.release_fill(order_id)

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        event = stop_event or self.stop_event
        self.stop_event = event
        logger.info(
            "monitor_started",
            extra={"extra": {"interval_seconds": self.config.monitor_interval_seconds}},
        )
        try:
            while not event.is_set():
                try:
                    self.run_pass()
                except ConfigurationError:
                    raise
                except Exception:  # noqa: BLE001
                    logger.exception("monitor_pass_failed")
                self.state = MonitorState.SLEEPING
                if event.wait(self.config.monitor_interval_seconds):
                    break
        finally:
            self.state = MonitorState.STOPPED
            logger.info("monitor_stopped")

    def start(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self.stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            args=(self.stop_event,),
            name="reinvestment-monitor",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float | None = None) -> None:
        self.stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
