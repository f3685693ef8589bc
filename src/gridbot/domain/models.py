from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

from gridbot.domain.symbols import canonical_symbol


class ValidationError(ValueError):
    """Raised when an order candidate violates symbol rules."""


def parse_decimal(value: object) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        normalized = value.strip().replace(",", ".")
        return Decimal(normalized) if normalized else Decimal("0")
    raise TypeError(f"Cannot parse decimal from {type(value)!r}")


def normalize_symbol(symbol: str) -> str:
    return canonical_symbol(symbol)


class OrderSide(StrEnum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def ledger_label(self) -> str:
        """Side label used in the trades ledger (Buy/Sell)."""
        return "Buy" if self is OrderSide.BUY else "Sell"


class OrderType(StrEnum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"


class ExchangeOrderStatus(StrEnum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    PENDING_CANCEL = "PENDING_CANCEL"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, raw: object) -> ExchangeOrderStatus:
        try:
            return cls(str(raw).strip().upper())
        except ValueError:
            return cls.UNKNOWN


class Balance(BaseModel):
    asset: str
    free: Decimal = Decimal("0")
    locked: Decimal = Decimal("0")


@dataclass(frozen=True)
class LotSize:
    min_qty: Decimal
    step_size: Decimal
    tick_size: Decimal | None = None


class ExchangeOrder(BaseModel):
    """One row of the exchange open-order / order-history listings."""

    order_id: str
    symbol: str
    side: OrderSide | None = None
    status: ExchangeOrderStatus = ExchangeOrderStatus.UNKNOWN
    price: Decimal = Decimal("0")
    stop_price: Decimal = Decimal("0")
    orig_qty: Decimal = Decimal("0")
    executed_qty: Decimal = Decimal("0")
    cumulative_quote_qty: Decimal = Decimal("0")
    type: str = "UNKNOWN"
    time: int = 0

    @property
    def fill_price(self) -> Decimal:
        """Order price, or the average execution price when the exchange reports price 0 (MARKET)."""
        if self.price > 0:
            return self.price
        if self.executed_qty > 0 and self.cumulative_quote_qty > 0:
            return self.cumulative_quote_qty / self.executed_qty
        return Decimal("0")

    @property
    def is_filled_sell(self) -> bool:
        return self.status == ExchangeOrderStatus.FILLED and self.side == OrderSide.SELL


class AccountTrade(BaseModel):
    trade_id: str
    order_id: str
    symbol: str
    price: Decimal
    qty: Decimal
    quote_qty: Decimal = Decimal("0")
    commission: Decimal = Decimal("0")
    commission_asset: str = ""
    is_buyer: bool = False
    time: int = 0


class CapitalAllocation(BaseModel):
    symbol: str
    amount: Decimal
    min_price: Decimal
    max_price: Decimal
    is_active: bool = False


class Trade(BaseModel):
    id: int | None = None
    symbol: str
    price: Decimal
    quantity: Decimal
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    side: OrderSide
    profit: Decimal | None = None
    order_id: str


class MirroredOrder(BaseModel):
    order_id: str
    symbol: str
    price: Decimal
    stop_price: Decimal
    quantity: Decimal
    type: str
    status: str
    timestamp: datetime


class ExchangeError(RuntimeError):
    """Raised when an exchange request fails."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | str | None = None,
        error_message: str | None = None,
        request_path: str | None = None,
        request_method: str | None = None,
        response_body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.error_message = error_message
        self.request_path = request_path
        self.request_method = request_method
        self.response_body = response_body
