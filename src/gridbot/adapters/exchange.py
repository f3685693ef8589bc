from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal

from gridbot.domain.models import (
    AccountTrade,
    Balance,
    ExchangeOrder,
    LotSize,
    OrderSide,
    OrderType,
)


class ExchangeClient(ABC):
    @abstractmethod
    def get_server_time(self) -> int:
        """Return exchange server time in epoch milliseconds."""
        raise NotImplementedError

    @abstractmethod
    def get_price(self, symbol: str) -> Decimal:
        raise NotImplementedError

    @abstractmethod
    def get_lot_size(self, symbol: str) -> LotSize:
        raise NotImplementedError

    @abstractmethod
    def get_balance(self, asset: str) -> Balance:
        raise NotImplementedError

    @abstractmethod
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
        """Place an order and return the exchange-assigned order id."""
        raise NotImplementedError

    @abstractmethod
    def get_open_orders(self, symbol: str | None = None) -> list[ExchangeOrder]:
        raise NotImplementedError

    @abstractmethod
    def get_all_orders(self, symbol: str) -> list[ExchangeOrder]:
        raise NotImplementedError

    def get_my_trades(self, symbol: str) -> list[AccountTrade]:
        del symbol
        return []

    def close(self) -> None:
        """Release resources associated with the exchange client."""
        return None
