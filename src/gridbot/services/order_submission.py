from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.models import LotSize, OrderSide, OrderType, Trade, normalize_symbol
from gridbot.domain.quantity import prepare_order_quantity
from gridbot.domain.strategy import StrategyConfig
from gridbot.domain.symbols import base_asset
from gridbot.logging_context import with_logging_context
from gridbot.persistence.uow import UnitOfWorkFactory
from gridbot.services.balance_guard import BalanceGuard
from gridbot.services.lot_size_service import LotSizeService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    ok: bool
    symbol: str
    side: OrderSide
    quantity: Decimal
    price: Decimal
    order_id: str | None = None
    reason: str | None = None
    accepted: bool = False
    trade_id: int | None = None


class OrderSubmissionCoordinator:
    """Validates, places and records one order.

    Every failure path leaves the trades ledger untouched except an accepted
    order whose ledger write failed, which is reported with ``accepted=True``.
    """

    def __init__(
        self,
        gateway: ExchangeGateway,
        uow_factory: UnitOfWorkFactory,
        lot_sizes: LotSizeService,
        balance_guard: BalanceGuard,
        config: StrategyConfig,
    ) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory
        self.lot_sizes = lot_sizes
        self.balance_guard = balance_guard
        self.config = config

    def submit(
        self,
        symbol: str,
        side: OrderSide,
        price: Decimal,
        quantity: Decimal,
        is_market: bool,
        lot_size: LotSize | None = None,
    ) -> SubmissionResult:
        pair = normalize_symbol(symbol)
        resolved_lot = lot_size or self.lot_sizes.get_lot_size(pair)
        check = prepare_order_quantity(side, quantity, resolved_lot, self.config.fee_rate)

        def _failed(reason: str, *, qty: Decimal) -> SubmissionResult:
            return SubmissionResult(
                ok=False, symbol=pair, side=side, quantity=qty, price=price, reason=reason
            )

        if not check.ok:
            logger.info(
                "order_skipped_quantity",
                extra={
                    "extra": {
                        "symbol": pair,
                        "side": side.value,
                        "requested_qty": str(quantity),
                        "adjusted_qty": str(check.quantity),
                        "reason": check.reason,
                    }
                },
            )
            return _failed(check.reason or "invalid_quantity", qty=check.quantity)
        adjusted = check.quantity

        if side == OrderSide.SELL:
            try:
                asset = base_asset(pair)
            except ValueError:
                return _failed("unknown_base_asset", qty=adjusted)
            if not self.balance_guard.await_balance(asset, adjusted):
                logger.warning(
                    "order_skipped_balance",
                    extra={"extra": {"symbol": pair, "asset": asset, "required": str(adjusted)}},
                )
                return _failed("insufficient_balance", qty=adjusted)

        stamp = self.gateway.server_time()
        if not stamp.ok or stamp.value is None:
            return _failed(f"server_time_unavailable: {stamp.reason}", qty=adjusted)

        order_type = OrderType.MARKET if is_market else OrderType.LIMIT
        placed = self.gateway.place_order(
            symbol=pair,
            side=side,
            order_type=order_type,
            quantity=adjusted,
            price=None if is_market else price,
            time_in_force=None if is_market else "GTC",
            timestamp_ms=stamp.value,
        )
        if not placed.ok or placed.value is None:
            return _failed(f"order_rejected: {placed.reason}", qty=adjusted)
        order_id = placed.value

        with with_logging_context(order_id=order_id, symbol=pair):
            logger.info(
                "order_placed",
                extra={
                    "extra": {
                        "side": side.value,
                        "type": order_type.value,
                        "price": str(price),
                        "quantity": str(adjusted),
                    }
                },
            )
            trade = Trade(
                symbol=pair,
                price=price,
                quantity=adjusted,
                timestamp=datetime.now(UTC),
                side=side,
                order_id=order_id,
            )
            try:
                with self.uow_factory() as uow:
                    trade_id = uow.trades.insert(trade)
            except Exception as exc:  # noqa: BLE001
                logger.critical(
                    "trade_persist_failed",
                    extra={
                        "extra": {
                            "exchange_order_id": order_id,
                            "side": side.value,
                            "price": str(price),
                            "quantity": str(adjusted),
                            "error_type": type(exc).__name__,
                        }
                    },
                    exc_info=True,
                )
                return SubmissionResult(
                    ok=False,
                    symbol=pair,
                    side=side,
                    quantity=adjusted,
                    price=price,
                    order_id=order_id,
                    reason=f"trade_persist_failed: {type(exc).__name__}",
                    accepted=True,
                )

        return SubmissionResult(
            ok=True,
            symbol=pair,
            side=side,
            quantity=adjusted,
            price=price,
            order_id=order_id,
            accepted=True,
            trade_id=trade_id,
        )
