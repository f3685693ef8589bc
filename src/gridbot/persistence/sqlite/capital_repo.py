from __future__ import annotations

import logging
import sqlite3
from decimal import Decimal

from gridbot.domain.models import CapitalAllocation, normalize_symbol

logger = logging.getLogger(__name__)


class SqliteCapitalRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "capital"}})
            raise PermissionError("UnitOfWork is read-only; capital writes are blocked")

    @staticmethod
    def _row_to_allocation(row: sqlite3.Row) -> CapitalAllocation:
        return CapitalAllocation(
            symbol=str(row["symbol"]),
            amount=Decimal(str(row["amount"])),
            min_price=Decimal(str(row["min_price"])),
            max_price=Decimal(str(row["max_price"])),
            is_active=bool(row["is_active"]),
        )

    def upsert(self, allocation: CapitalAllocation) -> None:
        """Create or replace an allocation; an existing row keeps its is_active flag."""
        self._ensure_writable()
        self._conn.execute(
            """
            INSERT INTO capital(symbol, amount, min_price, max_price, is_active)
            VALUES (?, ?, ?, ?, 0)
            ON CONFLICT(symbol) DO UPDATE SET
                amount = excluded.amount,
                min_price = excluded.min_price,
                max_price = excluded.max_price
            """,
            (
                normalize_symbol(allocation.symbol),
                str(allocation.amount),
                str(allocation.min_price),
                str(allocation.max_price),
            ),
        )

    def get(self, symbol: str) -> CapitalAllocation | None:
        row = self._conn.execute(
            "SELECT * FROM capital WHERE symbol = ?", (normalize_symbol(symbol),)
        ).fetchone()
        return None if row is None else self._row_to_allocation(row)

    def list_all(self) -> list[CapitalAllocation]:
        rows = self._conn.execute("SELECT * FROM capital ORDER BY symbol").fetchall()
        return [self._row_to_allocation(row) for row in rows]

    def list_active(self) -> list[CapitalAllocation]:
        rows = self._conn.execute(
            "SELECT * FROM capital WHERE is_active = 1 ORDER BY symbol"
        ).fetchall()
        return [self._row_to_allocation(row) for row in rows]

    def try_activate(self, symbol: str) -> bool:
        """Flip is_active 0 -> 1; False when the row is missing or already active."""
        self._ensure_writable()
        cursor = self._conn.execute(
            "UPDATE capital SET is_active = 1 WHERE symbol = ? AND is_active = 0",
            (normalize_symbol(symbol),),
        )
        return cursor.rowcount == 1

    def deactivate(self, symbol: str) -> bool:
        self._ensure_writable()
        cursor = self._conn.execute(
            "UPDATE capital SET is_active = 0 WHERE symbol = ? AND is_active = 1",
            (normalize_symbol(symbol),),
        )
        return cursor.rowcount == 1

    def add_amount(self, symbol: str, delta: Decimal) -> Decimal | None:
        """Add ``delta`` to the stored amount and return the new amount.

        The amount column is TEXT so the sum is computed in Decimal and written
        back with a compare-and-set on the previous value.
        """
        self._ensure_writable()
        pair = normalize_symbol(symbol)
        row = self._conn.execute("SELECT amount FROM capital WHERE symbol = ?", (pair,)).fetchone()
        if row is None:
            return None
        previous = str(row["amount"])
        updated = Decimal(previous) + delta
        cursor = self._conn.execute(
            "UPDATE capital SET amount = ? WHERE symbol = ? AND amount = ?",
            (str(updated), pair, previous),
        )
        if cursor.rowcount != 1:
            raise sqlite3.OperationalError(f"capital amount changed concurrently for {pair}")
        return updated
