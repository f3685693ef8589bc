from __future__ import annotations

import logging
from datetime import UTC, datetime

from gridbot.adapters.gateway import ExchangeGateway
from gridbot.domain.models import AccountTrade, ExchangeOrder, MirroredOrder
from gridbot.persistence.uow import UnitOfWorkFactory

logger = logging.getLogger(__name__)


def to_mirrored_order(order: ExchangeOrder) -> MirroredOrder:
    timestamp = datetime.fromtimestamp(order.time / 1000, UTC) if order.time else datetime.now(UTC)
    return MirroredOrder(
        order_id=order.order_id,
        symbol=order.symbol,
        price=order.price,
        stop_price=order.stop_price,
        quantity=order.orig_qty,
        type=order.type,
        status=order.status.value,
        timestamp=timestamp,
    )


class OrderMirrorService:
    def __init__(self, gateway: ExchangeGateway, uow_factory: UnitOfWorkFactory) -> None:
        self.gateway = gateway
        self.uow_factory = uow_factory

    def refresh(self, symbol: str | None = None) -> list[MirroredOrder] | None:
        """Replace the local mirror with the current open orders; None when the fetch failed."""
        result = self.gateway.open_orders(symbol)
        if not result.ok or result.value is None:
            logger.warning("order_mirror_refresh_failed", extra={"extra": {"reason": result.reason}})
            return None
        snapshot = [to_mirrored_order(order) for order in result.value]
        with self.uow_factory() as uow:
            pruned = uow.orders.replace_snapshot(snapshot)
            mirrored = uow.orders.list_orders()
        logger.info(
            "order_mirror_refreshed",
            extra={"extra": {"open_orders": len(snapshot), "pruned": pruned}},
        )
        return mirrored

    def list_mirrored(self) -> list[MirroredOrder]:
        with self.uow_factory() as uow:
            return uow.orders.list_orders()

    def recent_fills(self, symbol: str) -> list[AccountTrade] | None:
        result = self.gateway.my_trades(symbol)
        if not result.ok or result.value is None:
            return None
        return sorted(result.value, key=lambda trade: trade.time, reverse=True)
