from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from gridbot.domain.models import MirroredOrder

logger = logging.getLogger(__name__)


class SqliteOrdersRepo:
    """Local mirror of the exchange open-order list."""

    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "orders"}})
            raise PermissionError("UnitOfWork is read-only; orders writes are blocked")

    def replace_snapshot(self, orders: list[MirroredOrder]) -> int:
        """Insert unseen orders, prune the ones missing from ``orders``; returns rows pruned."""
        self._ensure_writable()
        for order in orders:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO orders(
                    order_id, symbol, price, stop_price, quantity, type, status, timestamp
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.order_id,
                    order.symbol,
                    str(order.price),
                    str(order.stop_price),
                    str(order.quantity),
                    order.type,
                    order.status,
                    order.timestamp.isoformat(),
                ),
            )
        keep = [order.order_id for order in orders]
        if not keep:
            cursor = self._conn.execute("DELETE FROM orders")
        else:
            placeholders = ",".join("?" for _ in keep)
            cursor = self._conn.execute(
                f"DELETE FROM orders WHERE order_id NOT IN ({placeholders})", keep
            )
        return cursor.rowcount

    def list_orders(self) -> list[MirroredOrder]:
        rows = self._conn.execute("SELECT * FROM orders ORDER BY timestamp DESC, id DESC").fetchall()
        return [
            MirroredOrder(
                order_id=str(row["order_id"]),
                symbol=str(row["symbol"]),
                price=Decimal(str(row["price"])),
                stop_price=Decimal(str(row["stop_price"])),
                quantity=Decimal(str(row["quantity"])),
                type=str(row["type"]),
                status=str(row["status"]),
                timestamp=datetime.fromisoformat(str(row["timestamp"])),
            )
            for row in rows
        ]
