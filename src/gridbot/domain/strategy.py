from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

STRATEGY_CONFIG_VERSION = "2025.1"


@dataclass(frozen=True)
class StrategyConfig:
    """Every tunable constant of the grid engine and the reinvestment loop."""

    fee_rate: Decimal = Decimal("0.001")
    sell_offsets: tuple[Decimal, ...] = (Decimal("0.05"), Decimal("0.10"), Decimal("0.15"))
    buy_offsets: tuple[Decimal, ...] = (Decimal("-0.05"), Decimal("-0.10"))
    initial_buy_count: int = 3
    order_notional: Decimal = Decimal("10")
    reinvest_margin: Decimal = Decimal("0.05")
    rebuy_discount: Decimal = Decimal("0.05")
    resell_markup: Decimal = Decimal("0.05")
    balance_poll_attempts: int = 5
    balance_poll_interval_seconds: float = 2.0
    monitor_interval_seconds: float = 60.0
    lot_size_fallback_min_qty: Decimal = Decimal("0.01")
    lot_size_fallback_step_size: Decimal = Decimal("0.01")
    price_decimals: int = 2
    max_active_orders: int = 5
    version: str = field(default=STRATEGY_CONFIG_VERSION)

    def __post_init__(self) -> None:
        if self.initial_buy_count < 0:
            raise ValueError("initial_buy_count must be >= 0")
        if len(self.sell_offsets) < self.initial_buy_count:
            raise ValueError(
                "sell_offsets must provide one offset per initial buy; "
                f"offsets={len(self.sell_offsets)} initial_buy_count={self.initial_buy_count}"
            )
        if not Decimal("0") <= self.fee_rate < Decimal("1"):
            raise ValueError("fee_rate must be in [0, 1)")
        if self.order_notional <= 0:
            raise ValueError("order_notional must be > 0")
        if self.balance_poll_attempts < 1:
            raise ValueError("balance_poll_attempts must be >= 1")
        if self.lot_size_fallback_step_size <= 0:
            raise ValueError("lot_size_fallback_step_size must be > 0")
