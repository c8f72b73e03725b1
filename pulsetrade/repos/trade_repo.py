"""Trade repository — read access to the append-only trades table."""

import math
import sqlite3

from pulsetrade.models.position import Trade
from pulsetrade.repos.db import get_connection


def _row_to_trade(row: sqlite3.Row) -> Trade:
    return Trade(
        id=row["id"],
        user_id=row["user_id"],
        session_id=row["session_id"],
        symbol=row["symbol"],
        side=row["side"],
        price=row["price"],
        quantity=row["quantity"],
        profit_rate=row["profit_rate"],
        order_ref=row["order_ref"],
        strategy=row["strategy"],
        created_at=row["created_at"],
    )


class TradeRepo:
    """Data access layer for trade records.

    Trades are only ever inserted by ``PositionRepo``; this class reads them.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def get_trades(self, user_id: str, page: int = 1, limit: int = 50) -> dict:
        """Return one page of a user's trades, newest first.

        Returns:
            ``{"trades": [Trade, ...], "total": int, "page": int,
            "limit": int, "total_pages": int}``
        """
        page = max(page, 1)
        limit = max(limit, 1)
        offset = (page - 1) * limit
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                """
                SELECT * FROM trades WHERE user_id = ?
                ORDER BY id DESC LIMIT ? OFFSET ?
                """,
                (user_id, limit, offset),
            ).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) FROM trades WHERE user_id = ?",
                (user_id,),
            ).fetchone()[0]
            return {
                "trades": [_row_to_trade(r) for r in rows],
                "total": total,
                "page": page,
                "limit": limit,
                "total_pages": math.ceil(total / limit),
            }
        finally:
            conn.close()
