"""Session repository — SQLite CRUD for the trading_sessions table."""

import json
import sqlite3
from datetime import datetime, timezone
from typing import Optional

from pulsetrade.errors import SessionStartError
from pulsetrade.models.session import SessionSettings, TradingSession
from pulsetrade.repos.db import get_connection


def _row_to_session(row: sqlite3.Row) -> TradingSession:
    return TradingSession(
        session_id=row["session_id"],
        user_id=row["user_id"],
        strategy=row["strategy"],
        symbols=json.loads(row["symbols"]),
        settings=SessionSettings.from_dict(json.loads(row["settings"])),
        started_at=row["started_at"],
        status=row["status"],
        stopped_at=row["stopped_at"],
        stop_reason=row["stop_reason"],
    )


class SessionRepo:
    """Data access layer for session lifecycle records.

    Args:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    # ── Write ────────────────────────────────────────────────────────────

    def insert_session(self, session: TradingSession) -> None:
        """Persist a new active session.

        Raises ``SessionStartError`` if the user already has an active row.
        """
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                """
                INSERT INTO trading_sessions
                    (session_id, user_id, strategy, symbols, settings,
                     status, started_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session.session_id,
                    session.user_id,
                    session.strategy,
                    json.dumps(session.symbols),
                    json.dumps(session.settings.to_dict()),
                    session.status,
                    session.started_at,
                ),
            )
            conn.commit()
        except sqlite3.IntegrityError as exc:
            raise SessionStartError(
                f"User {session.user_id} already has an active session"
            ) from exc
        finally:
            conn.close()

    def mark_stopped(self, session_id: str, reason: str = "stopped") -> bool:
        """Transition an active session to stopped.

        Returns ``True`` if a row changed, ``False`` if it was already stopped.
        """
        stopped_at = datetime.now(timezone.utc).isoformat()
        conn = get_connection(self._db_path)
        try:
            cur = conn.execute(
                """
                UPDATE trading_sessions
                SET status = 'stopped', stopped_at = ?, stop_reason = ?
                WHERE session_id = ? AND status = 'active'
                """,
                (stopped_at, reason, session_id),
            )
            conn.commit()
            return cur.rowcount > 0
        finally:
            conn.close()

    # ── Read ─────────────────────────────────────────────────────────────

    def get_active(self, user_id: str) -> Optional[TradingSession]:
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM trading_sessions WHERE user_id = ? AND status = 'active'",
                (user_id,),
            ).fetchone()
            return _row_to_session(row) if row else None
        finally:
            conn.close()

    def get_latest(self, user_id: str) -> Optional[TradingSession]:
        """Most recently started session for *user_id*, whatever its status."""
        conn = get_connection(self._db_path)
        try:
            row = conn.execute(
                "SELECT * FROM trading_sessions WHERE user_id = ? ORDER BY id DESC LIMIT 1",
                (user_id,),
            ).fetchone()
            return _row_to_session(row) if row else None
        finally:
            conn.close()

    def list_active(self) -> list[TradingSession]:
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM trading_sessions WHERE status = 'active' ORDER BY id"
            ).fetchall()
            return [_row_to_session(r) for r in rows]
        finally:
            conn.close()
