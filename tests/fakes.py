from __future__ import annotations

from decimal import Decimal

from gridbot.adapters.exchange import ExchangeClient
from gridbot.domain.models import (
    AccountTrade,
    Balance,
    ExchangeError,
    ExchangeOrder,
    LotSize,
    OrderSide,
    OrderType,
)
from gridbot.domain.symbols import split_symbol


class FakeExchange(ExchangeClient):
    """In-memory exchange; MARKET buys credit the base asset immediately."""

    def __init__(
        self,
        *,
        prices: dict[str, Decimal] | None = None,
        lot_sizes: dict[str, LotSize] | None = None,
        balances: dict[str, Decimal] | None = None,
        server_time: int = 1_700_000_000_000,
    ) -> None:
        self.prices = dict(prices or {})
        self.lot_sizes = dict(lot_sizes or {})
        self.balances = dict(balances or {})
        self.server_time = server_time
        self.all_orders: dict[str, list[ExchangeOrder]] = {}
        self.open_orders: list[ExchangeOrder] = []
        self.my_trades: dict[str, list[AccountTrade]] = {}
        self.placed: list[dict[str, object]] = []
        self.calls: list[str] = []
        self.place_errors: list[Exception | None] = []
        self.balance_errors: list[Exception | None] = []
        self.all_orders_error: Exception | None = None
        self.open_orders_error: Exception | None = None
        self._next_order_id = 1000

    def get_server_time(self) -> int:
        self.calls.append("get_server_time")
        return self.server_time

    def get_price(self, symbol: str) -> Decimal:
        self.calls.append("get_price")
        if symbol not in self.prices:
            raise ExchangeError(f"unknown symbol {symbol}", status_code=400, error_code=-1121)
        return self.prices[symbol]

    def get_lot_size(self, symbol: str) -> LotSize:
        self.calls.append("get_lot_size")
        if symbol not in self.lot_sizes:
            raise ValueError(f"LOT_SIZE filter not found for {symbol}")
        return self.lot_sizes[symbol]

    def get_balance(self, asset: str) -> Balance:
        self.calls.append("get_balance")
        if self.balance_errors:
            error = self.balance_errors.pop(0)
            if error is not None:
                raise error
        return Balance(asset=asset, free=self.balances.get(asset, Decimal("0")))

    def place_order(
        self,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Decimal | None = None,
        time_in_force: str | None = None,
        timestamp_ms: int | None = None,
    ) -> str:
        self.calls.append("place_order")
        if self.place_errors:
            error = self.place_errors.pop(0)
            if error is not None:
                raise error
        self._next_order_id += 1
        order_id = str(self._next_order_id)
        self.placed.append(
            {
                "order_id": order_id,
                "symbol": symbol,
                "side": side,
                "type": order_type,
                "quantity": quantity,
                "price": price,
                "time_in_force": time_in_force,
                "timestamp_ms": timestamp_ms,
            }
        )
        base, _quote = split_symbol(symbol)
        if side == OrderSide.BUY and order_type == OrderType.MARKET:
            self.balances[base] = self.balances.get(base, Decimal("0")) + quantity
        elif side == OrderSide.SELL:
            self.balances[base] = self.balances.get(base, Decimal("0")) - quantity
        return order_id

    def get_open_orders(self, symbol: str | None = None) -> list[ExchangeOrder]:
        self.calls.append("get_open_orders")
        if self.open_orders_error is not None:
            raise self.open_orders_error
        if symbol is None:
            return list(self.open_orders)
        return [order for order in self.open_orders if order.symbol == symbol]

    def get_all_orders(self, symbol: str) -> list[ExchangeOrder]:
        self.calls.append("get_all_orders")
        if self.all_orders_error is not None:
            raise self.all_orders_error
        return list(self.all_orders.get(symbol, []))

    def get_my_trades(self, symbol: str) -> list[AccountTrade]:
        self.calls.append("get_my_trades")
        return list(self.my_trades.get(symbol, []))

    def placed_sides(self) -> list[tuple[OrderSide, OrderType]]:
        return [(row["side"], row["type"]) for row in self.placed]
