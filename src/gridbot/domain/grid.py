from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import StrEnum

from gridbot.domain.models import LotSize, OrderSide, ValidationError, normalize_symbol
from gridbot.domain.quantity import check_min_quantity, normalize_quantity, quantize_price
from gridbot.domain.strategy import StrategyConfig

logger = logging.getLogger(__name__)


class RungRole(StrEnum):
    INITIAL_BUY = "initial_buy"
    PAIRED_SELL = "paired_sell"
    EXTRA_BUY = "extra_buy"


@dataclass(frozen=True)
class GridRung:
    role: RungRole
    side: OrderSide
    price: Decimal
    quantity: Decimal
    is_market: bool = False
    pair_index: int | None = None


@dataclass(frozen=True)
class SkippedRung:
    role: RungRole
    price: Decimal
    quantity: Decimal
    reason: str


@dataclass
class GridLadder:
    symbol: str
    reference_price: Decimal
    order_notional: Decimal
    lot_size: LotSize
    rungs: list[GridRung] = field(default_factory=list)
    skipped: list[SkippedRung] = field(default_factory=list)

    def by_role(self, role: RungRole) -> list[GridRung]:
        return [rung for rung in self.rungs if rung.role == role]

    @property
    def initial_buys(self) -> list[GridRung]:
        return self.by_role(RungRole.INITIAL_BUY)

    @property
    def paired_sells(self) -> list[GridRung]:
        return self.by_role(RungRole.PAIRED_SELL)

    @property
    def extra_buys(self) -> list[GridRung]:
        return self.by_role(RungRole.EXTRA_BUY)

    def paired_sell_for(self, pair_index: int) -> GridRung | None:
        for rung in self.paired_sells:
            if rung.pair_index == pair_index:
                return rung
        return None


def build_grid_ladder(
    symbol: str,
    current_price: Decimal,
    order_notional: Decimal,
    lot_size: LotSize,
    config: StrategyConfig,
) -> GridLadder:
    """Build the fixed-shape ladder around ``current_price``.

    Initial buys are market orders at the reference price, each paired with a
    limit sell at ``sell_offsets[i]`` above it. Extra limit buys sit at the
    (negative) ``buy_offsets`` below the reference price. Quantities are
    normalized to the step size; rungs that end below ``min_qty`` are skipped.
    Sell rungs carry the pre-fee quantity of their buy: the fee is applied at
    submission time.
    """
    if current_price <= 0:
        raise ValidationError(f"current_price must be > 0; observed={current_price}")
    if order_notional <= 0:
        raise ValidationError(f"order_notional must be > 0; observed={order_notional}")
    if lot_size.step_size <= 0:
        raise ValidationError(f"step_size must be > 0; observed={lot_size.step_size}")

    ladder = GridLadder(
        symbol=normalize_symbol(symbol),
        reference_price=current_price,
        order_notional=order_notional,
        lot_size=lot_size,
    )

    initial_qty = normalize_quantity(order_notional / current_price, lot_size.step_size)
    for index in range(config.initial_buy_count):
        sell_price = quantize_price(
            current_price * (Decimal("1") + config.sell_offsets[index]),
            config.price_decimals,
            lot_size.tick_size,
        )
        check = check_min_quantity(initial_qty, lot_size.min_qty)
        if not check.ok:
            _skip(ladder, RungRole.INITIAL_BUY, current_price, initial_qty, check.reason)
            _skip(ladder, RungRole.PAIRED_SELL, sell_price, initial_qty, "paired_buy_skipped")
            continue
        ladder.rungs.append(
            GridRung(
                role=RungRole.INITIAL_BUY,
                side=OrderSide.BUY,
                price=current_price,
                quantity=initial_qty,
                is_market=True,
                pair_index=index,
            )
        )
        ladder.rungs.append(
            GridRung(
                role=RungRole.PAIRED_SELL,
                side=OrderSide.SELL,
                price=sell_price,
                quantity=initial_qty,
                pair_index=index,
            )
        )

    for offset in config.buy_offsets:
        buy_price = quantize_price(
            current_price * (Decimal("1") + offset), config.price_decimals, lot_size.tick_size
        )
        if buy_price <= 0:
            _skip(ladder, RungRole.EXTRA_BUY, buy_price, Decimal("0"), "non_positive_price")
            continue
        quantity = normalize_quantity(order_notional / buy_price, lot_size.step_size)
        check = check_min_quantity(quantity, lot_size.min_qty)
        if not check.ok:
            _skip(ladder, RungRole.EXTRA_BUY, buy_price, quantity, check.reason)
            continue
        ladder.rungs.append(
            GridRung(role=RungRole.EXTRA_BUY, side=OrderSide.BUY, price=buy_price, quantity=quantity)
        )

    return ladder


def _skip(
    ladder: GridLadder, role: RungRole, price: Decimal, quantity: Decimal, reason: str | None
) -> None:
    skipped = SkippedRung(role=role, price=price, quantity=quantity, reason=reason or "skipped")
    ladder.skipped.append(skipped)
    logger.warning(
        "grid_rung_skipped",
        extra={
            "extra": {
                "symbol": ladder.symbol,
                "role": role.value,
                "price": str(price),
                "quantity": str(quantity),
                "min_qty": str(ladder.lot_size.min_qty),
                "reason": skipped.reason,
            }
        },
    )
