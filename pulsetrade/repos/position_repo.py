"""Position repository — positions plus the trades that open and close them.

Opening a position and recording its buy trade happen in one SQLite
transaction, as do closing it and recording the sell trade.
"""

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from pulsetrade.errors import PositionInvariantError
from pulsetrade.models.position import Position
from pulsetrade.repos.db import get_connection


def _row_to_position(row: sqlite3.Row) -> Position:
    return Position(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        symbol=row["symbol"],
        side=row["side"],
        quantity=row["quantity"],
        avg_price=row["avg_price"],
        order_ref=row["order_ref"],
        status=row["status"],
        opened_at=row["opened_at"],
        closed_at=row["closed_at"],
        profit_rate=row["profit_rate"],
    )


_INSERT_TRADE = """
    INSERT INTO trades
        (user_id, session_id, symbol, side, price, quantity,
         profit_rate, order_ref, strategy, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class PositionRepo:
    """Data access layer for the ``positions`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def open_position(
        self,
        user_id: str,
        symbol: str,
        quantity: float,
        price: float,
        order_ref: str,
        session_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> Position:
        """Create an open position and its buy trade atomically.

        Raises ``PositionInvariantError`` if (user, symbol) already has an
        open position; nothing is written in that case.
        """
        now = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            with conn:
                cur = conn.execute(
                    """
                    INSERT INTO positions
                        (user_id, session_id, symbol, side, quantity,
                         avg_price, order_ref, status, opened_at)
                    VALUES (?, ?, ?, 'long', ?, ?, ?, 'open', ?)
                    """,
                    (user_id, session_id, symbol, quantity, price, order_ref, now),
                )
                position_id = cur.lastrowid
                conn.execute(
                    _INSERT_TRADE,
                    (user_id, session_id, symbol, "buy", price, quantity,
                     None, order_ref, strategy, now),
                )
            row = conn.execute(
                "SELECT * FROM positions WHERE id = ?", (position_id,),
            ).fetchone()
            return _row_to_position(row)
        except sqlite3.IntegrityError as exc:
            raise PositionInvariantError(
                f"User {user_id} already holds an open position in {symbol}"
            ) from exc
        finally:
            conn.close()

    def close_position(
        self,
        position: Position,
        price: float,
        profit_rate: float,
        order_ref: str,
        session_id: Optional[str] = None,
        strategy: Optional[str] = None,
    ) -> Position:
        """Close *position* and record its sell trade atomically.

        Raises ``PositionInvariantError`` if the position is no longer open.
        """
        now = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            with conn:
                cur = conn.execute(
                    """
                    UPDATE positions
                    SET status = 'closed', closed_at = ?, profit_rate = ?
                    WHERE id = ? AND status = 'open'
                    """,
                    (now, profit_rate, position.id),
                )
                if cur.rowcount == 0:
                    raise PositionInvariantError(
                        f"Position {position.id} ({position.symbol}) is not open"
                    )
                conn.execute(
                    _INSERT_TRADE,
                    (position.user_id, session_id or position.session_id,
                     position.symbol, "sell", price, position.quantity,
                     profit_rate, order_ref, strategy, now),
                )
            row = conn.execute(
                "SELECT * FROM positions WHERE id = ?", (position.id,),
            ).fetchone()
            return _row_to_position(row)
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_open(self, user_id: str, symbol: str) -> Optional[Position]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                """
                SELECT * FROM positions
                WHERE user_id = ? AND symbol = ? AND status = 'open'
                """,
                (user_id, symbol),
            ).fetchone()
            return _row_to_position(row) if row else None
        finally:
            conn.close()

    def list_open(self, user_id: str) -> list[Position]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM positions
                WHERE user_id = ? AND status = 'open'
                ORDER BY id DESC
                """,
                (user_id,),
            ).fetchall()
            return [_row_to_position(r) for r in rows]
        finally:
            conn.close()
