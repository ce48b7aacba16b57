from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from domain.models import Account, LeaderboardRow, LedgerEntry, LedgerReason
from domain.repositories import LedgerRepository, StorageError


logger = logging.getLogger(__name__)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        return None


class SqliteLedgerRepository(LedgerRepository):
    """
    SQLite-backed implementation of `LedgerRepository`.

    Owns the `vouch_points` (accounts) and `ledger` tables. Every mutation
    runs inside `BEGIN IMMEDIATE`, which takes the database write lock
    before the balance is read, so concurrent read-modify-writes serialise.
    """

    def __init__(self, db_path: str, busy_timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        # Autocommit mode; transactions are opened explicitly below.
        return sqlite3.connect(
            self._db_path,
            timeout=self._busy_timeout,
            isolation_level=None,
        )

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open {self._db_path}: {exc}") from exc

        try:
            cur = conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                yield cur
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            cur.execute("COMMIT")
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    @contextmanager
    def _reading(self) -> Iterator[sqlite3.Cursor]:
        try:
            conn = self._get_connection()
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open {self._db_path}: {exc}") from exc

        try:
            yield conn.cursor()
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_tables(self) -> None:
        with self._transaction() as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS vouch_points (
                    user_id TEXT PRIMARY KEY,
                    points INTEGER DEFAULT 0,
                    last_updated DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS ledger (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    delta INTEGER NOT NULL,
                    reason TEXT NOT NULL,
                    meta TEXT,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_ledger_user ON ledger(user_id)")

            # Older databases were created before display names were stored.
            cur.execute("PRAGMA table_info(vouch_points)")
            columns = {str(row[1]).lower() for row in cur.fetchall()}
            if "username" not in columns:
                logger.info("Adding username column to vouch_points")
                cur.execute("ALTER TABLE vouch_points ADD COLUMN username TEXT")

    @staticmethod
    def _to_domain(row: tuple) -> Account:
        return Account(
            id=str(row[0]),
            balance=int(row[1] or 0),
            username=row[2],
            last_updated=_parse_timestamp(row[3]),
        )

    @staticmethod
    def _entry_to_domain(row: tuple) -> LedgerEntry:
        return LedgerEntry(
            id=int(row[0]),
            user_id=str(row[1]),
            delta=int(row[2]),
            reason=LedgerReason(row[3]),
            metadata=json.loads(row[4]) if row[4] else None,
            created_at=_parse_timestamp(row[5]),
        )

    def get_account(self, user_id: str) -> Optional[Account]:
        with self._reading() as cur:
            cur.execute(
                "SELECT user_id, points, username, last_updated FROM vouch_points WHERE user_id = ?",
                (user_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def apply_delta(
        self,
        user_id: str,
        username: Optional[str],
        delta: int,
        reason: LedgerReason,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[int, bool]:
        with self._transaction() as cur:
            cur.execute("SELECT points FROM vouch_points WHERE user_id = ?", (user_id,))
            row = cur.fetchone()
            current = int(row[0] or 0) if row else 0
            new_balance = max(0, current + delta)

            if row:
                cur.execute(
                    """
                    UPDATE vouch_points
                    SET points = ?, username = COALESCE(?, username), last_updated = CURRENT_TIMESTAMP
                    WHERE user_id = ?
                    """,
                    (new_balance, username, user_id),
                )
            else:
                cur.execute(
                    "INSERT INTO vouch_points (user_id, points, username) VALUES (?, ?, ?)",
                    (user_id, new_balance, username),
                )

            cur.execute(
                "INSERT INTO ledger (user_id, delta, reason, meta) VALUES (?, ?, ?, ?)",
                (
                    user_id,
                    delta,
                    LedgerReason(reason).value,
                    json.dumps(metadata) if metadata else None,
                ),
            )
            return new_balance, row is None

    def get_entries(self, user_id: str) -> List[LedgerEntry]:
        with self._reading() as cur:
            cur.execute(
                """
                SELECT id, user_id, delta, reason, meta, created_at
                FROM ledger
                WHERE user_id = ?
                ORDER BY id
                """,
                (user_id,),
            )
            return [self._entry_to_domain(row) for row in cur.fetchall()]

    def top_balances(self, limit: int) -> List[LeaderboardRow]:
        with self._reading() as cur:
            cur.execute(
                "SELECT user_id, username, points FROM vouch_points ORDER BY points DESC LIMIT ?",
                (limit,),
            )
            return [
                LeaderboardRow(user_id=str(row[0]), username=row[1], value=int(row[2] or 0))
                for row in cur.fetchall()
            ]

    def top_net_by_reasons(
        self,
        reasons: Sequence[LedgerReason],
        limit: int,
    ) -> List[LeaderboardRow]:
        if not reasons:
            return []
        placeholders = ", ".join("?" for _ in reasons)
        with self._reading() as cur:
            cur.execute(
                f"""
                SELECT l.user_id, v.username, SUM(l.delta) AS net
                FROM ledger l
                LEFT JOIN vouch_points v ON v.user_id = l.user_id
                WHERE l.reason IN ({placeholders})
                GROUP BY l.user_id
                ORDER BY net DESC
                LIMIT ?
                """,
                (*[LedgerReason(r).value for r in reasons], limit),
            )
            return [
                LeaderboardRow(user_id=str(row[0]), username=row[1], value=int(row[2] or 0))
                for row in cur.fetchall()
            ]

    def set_username(self, user_id: str, username: str) -> None:
        with self._transaction() as cur:
            cur.execute(
                "UPDATE vouch_points SET username = ? WHERE user_id = ?",
                (username, user_id),
            )

    def delete_all_accounts(self) -> int:
        with self._transaction() as cur:
            cur.execute("DELETE FROM vouch_points")
            return cur.rowcount

    def replace_all_accounts(self, counts: Mapping[str, Tuple[int, Optional[str]]]) -> None:
        with self._transaction() as cur:
            cur.execute("DELETE FROM vouch_points")
            for user_id, (points, username) in counts.items():
                cur.execute(
                    "INSERT INTO vouch_points (user_id, points, username) VALUES (?, ?, ?)",
                    (user_id, max(0, int(points)), username),
                )
                cur.execute(
                    "INSERT INTO ledger (user_id, delta, reason, meta) VALUES (?, ?, ?, ?)",
                    (
                        user_id,
                        int(points),
                        LedgerReason.RECOUNT.value,
                        json.dumps({"vouches": int(points)}),
                    ),
                )
