"""Backtest result repository — persists backtest summaries to SQLite."""

from datetime import datetime, timezone
from typing import Optional

from pulsetrade.repos.db import get_connection


class BacktestRepo:
    """Data access layer for the ``backtest_results`` table.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def insert_result(self, result: dict, user_id: Optional[str] = None) -> int:
        """Persist a backtest summary.  Returns the row id."""
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                INSERT INTO backtest_results
                    (user_id, strategy, symbol, start_date, end_date,
                     initial_amount, final_amount, total_return, total_trades,
                     win_count, loss_count, win_rate, max_drawdown,
                     sharpe_ratio, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    result["strategy"],
                    result["symbol"],
                    result["start_date"],
                    result["end_date"],
                    result["initial_amount"],
                    result["final_amount"],
                    result["total_return"],
                    result["total_trades"],
                    result["win_count"],
                    result["loss_count"],
                    result["win_rate"],
                    result.get("max_drawdown"),
                    result.get("sharpe_ratio"),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    def get_results(self, user_id: Optional[str] = None, limit: int = 10) -> list[dict]:
        """Return recent backtest summaries, optionally for one user."""
        conn = get_connection(self._db_path)
        try:
            if user_id is None:
                rows = conn.execute(
                    "SELECT * FROM backtest_results ORDER BY id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM backtest_results WHERE user_id = ?
                    ORDER BY id DESC LIMIT ?
                    """,
                    (user_id, limit),
                ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()
