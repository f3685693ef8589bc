from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal

from gridbot.domain.models import CapitalAllocation, OrderSide, Trade, ValidationError, normalize_symbol
from gridbot.persistence.uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveOrderReport:
    buy_count: int
    sell_count: int
    max_active_orders: int

    @property
    def total(self) -> int:
        return self.buy_count + self.sell_count

    @property
    def cap_reached(self) -> bool:
        return self.total >= self.max_active_orders


@dataclass(frozen=True)
class RemainingCapital:
    symbol: str
    amount: Decimal
    source: str


class CapitalService:
    """Operator-facing reads and writes over allocations and the trades ledger."""

    def __init__(self, uow_factory: UnitOfWorkFactory, *, max_active_orders: int = 5) -> None:
        self.uow_factory = uow_factory
        self.max_active_orders = max_active_orders

    def set_allocation(
        self, symbol: str, amount: Decimal, min_price: Decimal, max_price: Decimal
    ) -> CapitalAllocation:
        pair = normalize_symbol(symbol)
        if not pair:
            raise ValidationError("symbol must be non-empty")
        if amount <= 0:
            raise ValidationError(f"amount must be > 0; observed={amount}")
        if min_price < 0 or max_price < 0 or (max_price and min_price > max_price):
            raise ValidationError(
                f"price band is invalid; min_price={min_price} max_price={max_price}"
            )
        with self.uow_factory() as uow:
            uow.capital.upsert(
                CapitalAllocation(
                    symbol=pair, amount=amount, min_price=min_price, max_price=max_price
                )
            )
            stored = uow.capital.get(pair)
        logger.info(
            "capital_allocation_set",
            extra={
                "extra": {
                    "symbol": pair,
                    "amount": str(amount),
                    "min_price": str(min_price),
                    "max_price": str(max_price),
                }
            },
        )
        if stored is None:
            raise RuntimeError(f"capital allocation for {pair} vanished after upsert")
        return stored

    def list_allocations(self) -> list[CapitalAllocation]:
        with self.uow_factory() as uow:
            return uow.capital.list_all()

    def deactivate(self, symbol: str) -> bool:
        pair = normalize_symbol(symbol)
        with self.uow_factory() as uow:
            changed = uow.capital.deactivate(pair)
        logger.info("grid_deactivated", extra={"extra": {"symbol": pair, "changed": changed}})
        return changed

    def remaining_capital(self, symbol: str) -> RemainingCapital | None:
        """Traded quantity total when the symbol has trades, else the allocated amount."""
        pair = normalize_symbol(symbol)
        with self.uow_factory() as uow:
            traded = uow.trades.sum_quantity(pair)
            if traded is not None:
                return RemainingCapital(symbol=pair, amount=traded, source="trades")
            allocation = uow.capital.get(pair)
        if allocation is None:
            return None
        return RemainingCapital(symbol=pair, amount=allocation.amount, source="allocation")

    def active_orders(self) -> ActiveOrderReport:
        with self.uow_factory() as uow:
            counts = uow.trades.count_by_side()
        report = ActiveOrderReport(
            buy_count=counts[OrderSide.BUY],
            sell_count=counts[OrderSide.SELL],
            max_active_orders=self.max_active_orders,
        )
        if report.cap_reached:
            logger.warning(
                "active_order_cap_reached",
                extra={"extra": {"total": report.total, "cap": report.max_active_orders}},
            )
        return report

    def positions(self, symbol: str | None = None, *, limit: int | None = None) -> list[Trade]:
        with self.uow_factory() as uow:
            return uow.trades.list_trades(symbol, limit=limit)
