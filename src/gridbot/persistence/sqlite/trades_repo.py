from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from gridbot.domain.models import OrderSide, Trade, normalize_symbol

logger = logging.getLogger(__name__)


class SqliteTradesRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "trades"}})
            raise PermissionError("UnitOfWork is read-only; trades writes are blocked")

    @staticmethod
    def _row_to_trade(row: sqlite3.Row) -> Trade:
        side = OrderSide.BUY if str(row["type"]).upper() == "BUY" else OrderSide.SELL
        return Trade(
            id=int(row["id"]),
            symbol=str(row["symbol"]),
            price=Decimal(str(row["price"])),
            quantity=Decimal(str(row["quantity"])),
            timestamp=datetime.fromisoformat(str(row["timestamp"])),
            side=side,
            profit=Decimal(str(row["profit"])) if row["profit"] is not None else None,
            order_id=str(row["order_id"]),
        )

    def insert(self, trade: Trade) -> int:
        self._ensure_writable()
        cursor = self._conn.execute(
            """
            INSERT INTO trades(symbol, price, quantity, timestamp, type, profit, order_id)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                normalize_symbol(trade.symbol),
                str(trade.price),
                str(trade.quantity),
                trade.timestamp.isoformat(),
                trade.side.ledger_label,
                str(trade.profit) if trade.profit is not None else None,
                trade.order_id,
            ),
        )
        return int(cursor.lastrowid)

    def order_id_exists(self, order_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM trades WHERE order_id = ?", (str(order_id),)
        ).fetchone()
        return row is not None

    def get_by_order_id(self, order_id: str) -> Trade | None:
        row = self._conn.execute(
            "SELECT * FROM trades WHERE order_id = ?", (str(order_id),)
        ).fetchone()
        return None if row is None else self._row_to_trade(row)

    def claim_fill(self, order_id: str, profit: Decimal) -> bool:
        """Mark a recorded sell as processed by storing its profit.

        Only Sell rows written by this engine with no profit yet can be claimed;
        False means the fill is unknown or an earlier pass already claimed it.
        """
        self._ensure_writable()
        cursor = self._conn.execute(
            """
            UPDATE trades SET profit = ?
            WHERE order_id = ? AND type = ? AND profit IS NULL
            """,
            (str(profit), str(order_id), OrderSide.SELL.ledger_label),
        )
        return cursor.rowcount == 1

    def release_fill(self, order_id: str) -> None:
        self._ensure_writable()
        self._conn.execute(
            "UPDATE trades SET profit = NULL WHERE order_id = ? AND type = ?",
            (str(order_id), OrderSide.SELL.ledger_label),
        )

    def list_trades(self, symbol: str | None = None, *, limit: int | None = None) -> list[Trade]:
        query = "SELECT * FROM trades"
        params: list[object] = []
        if symbol is not None:
            query += " WHERE symbol = ?"
            params.append(normalize_symbol(symbol))
        query += " ORDER BY timestamp DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(int(limit))
        rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_trade(row) for row in rows]

    def sum_quantity(self, symbol: str) -> Decimal | None:
        """Sum of traded quantities for ``symbol``; None when it has no trades."""
        rows = self._conn.execute(
            "SELECT quantity FROM trades WHERE symbol = ?", (normalize_symbol(symbol),)
        ).fetchall()
        if not rows:
            return None
        return sum((Decimal(str(row["quantity"])) for row in rows), Decimal("0"))

    def count_by_side(self) -> dict[OrderSide, int]:
        rows = self._conn.execute(
            "SELECT type, COUNT(*) AS n FROM trades GROUP BY type"
        ).fetchall()
        counts = {OrderSide.BUY: 0, OrderSide.SELL: 0}
        for row in rows:
            label = str(row["type"]).upper()
            if label in {"BUY", "SELL"}:
                counts[OrderSide(label)] += int(row["n"])
        return counts
