from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from gridbot.domain.models import LotSize, OrderSide, ValidationError


@dataclass(frozen=True)
class QuantityCheck:
    ok: bool
    quantity: Decimal
    reason: str | None = None


def normalize_quantity(quantity: Decimal, step_size: Decimal) -> Decimal:
    """Truncate ``quantity`` down to a whole multiple of ``step_size``."""
    if step_size <= 0:
        raise ValidationError(f"step_size must be > 0; observed={step_size}")
    if quantity <= 0:
        return Decimal("0")
    steps = (quantity / step_size).to_integral_value(rounding=ROUND_DOWN)
    return steps * step_size if steps else Decimal("0")


def apply_sell_fee(quantity: Decimal, fee_rate: Decimal) -> Decimal:
    if fee_rate < 0 or fee_rate >= 1:
        raise ValidationError(f"fee_rate must be in [0, 1); observed={fee_rate}")
    return quantity * (Decimal("1") - fee_rate)


def check_min_quantity(quantity: Decimal, min_qty: Decimal) -> QuantityCheck:
    if quantity <= 0 or quantity < min_qty:
        return QuantityCheck(
            ok=False,
            quantity=quantity,
            reason=f"below_min_qty: quantity={quantity} min_qty={min_qty}",
        )
    return QuantityCheck(ok=True, quantity=quantity)


def prepare_order_quantity(
    side: OrderSide,
    quantity: Decimal,
    lot_size: LotSize,
    fee_rate: Decimal,
) -> QuantityCheck:
    """Fee adjustment (sells only), then normalization, then the min-qty gate."""
    if lot_size.step_size <= 0:
        return QuantityCheck(ok=False, quantity=quantity, reason="invalid_step_size")
    candidate = apply_sell_fee(quantity, fee_rate) if side == OrderSide.SELL else quantity
    return check_min_quantity(normalize_quantity(candidate, lot_size.step_size), lot_size.min_qty)


def quantize_price(price: Decimal, decimals: int, tick_size: Decimal | None = None) -> Decimal:
    """Round down to the symbol's tick size when known, else to ``decimals`` places."""
    if tick_size is not None and tick_size > 0:
        ticks = (price / tick_size).to_integral_value(rounding=ROUND_DOWN)
        return ticks * tick_size if ticks else Decimal("0")
    if decimals < 0:
        raise ValidationError(f"price decimals must be >= 0; observed={decimals}")
    quantum = Decimal("1").scaleb(-decimals)
    return price.quantize(quantum, rounding=ROUND_DOWN)
