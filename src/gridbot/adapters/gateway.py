from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Generic, TypeVar

import httpx

from gridbot.adapters.binance_http import ConfigurationError
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

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    ok: bool
    value: T | None = None
    reason: str | None = None


_BOUNDARY_ERRORS: tuple[type[Exception], ...] = (
    ExchangeError,
    httpx.HTTPError,
    ValueError,
    TypeError,
    KeyError,
    InvalidOperation,
)


class ExchangeGateway:
    """Single boundary to the exchange; failures come back as values, not exceptions."""

    def __init__(self, client: ExchangeClient) -> None:
        self.client = client

    def _call(self, operation: str, fn: Callable[[], T], **context: object) -> GatewayResult[T]:
        try:
            return GatewayResult(ok=True, value=fn())
        except ConfigurationError:
            raise
        except _BOUNDARY_ERRORS as exc:
            reason = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "exchange_call_failed",
                extra={
                    "extra": {
                        "operation": operation,
                        "error_type": type(exc).__name__,
                        "status_code": getattr(exc, "status_code", None),
                        "error_code": getattr(exc, "error_code", None),
                        **{key: str(value) for key, value in context.items()},
                    }
                },
            )
            return GatewayResult(ok=False, reason=reason)

    def server_time(self) -> GatewayResult[int]:
        return self._call("server_time", self.client.get_server_time)

    def price(self, symbol: str) -> GatewayResult[Decimal]:
        return self._call("price", lambda: self.client.get_price(symbol), symbol=symbol)

    def lot_size(self, symbol: str) -> GatewayResult[LotSize]:
        return self._call("lot_size", lambda: self.client.get_lot_size(symbol), symbol=symbol)

    def balance(self, asset: str) -> GatewayResult[Balance]:
        return self._call("balance", lambda: self.client.get_balance(asset), asset=asset)

    def place_order(
        self,
        *,
        symbol: str,
        side: OrderSide,
        order_type: OrderType,
        quantity: Decimal,
        price: Decimal | None = None,
        time_in_force: str | None = None,
        timestamp_ms: int | None = None,
    ) -> GatewayResult[str]:
        return self._call(
            "place_order",
            lambda: self.client.place_order(
                symbol=symbol,
                side=side,
                order_type=order_type,
                quantity=quantity,
                price=price,
                time_in_force=time_in_force,
                timestamp_ms=timestamp_ms,
            ),
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
        )

    def open_orders(self, symbol: str | None = None) -> GatewayResult[list[ExchangeOrder]]:
        return self._call(
            "open_orders", lambda: self.client.get_open_orders(symbol), symbol=symbol or "*"
        )

    def all_orders(self, symbol: str) -> GatewayResult[list[ExchangeOrder]]:
        return self._call("all_orders", lambda: self.client.get_all_orders(symbol), symbol=symbol)

    def my_trades(self, symbol: str) -> GatewayResult[list[AccountTrade]]:
        return self._call("my_trades", lambda: self.client.get_my_trades(symbol), symbol=symbol)

    def close(self) -> None:
        self.client.close()
